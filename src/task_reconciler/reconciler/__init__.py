"""Reconciliation pipeline for marketplace task assignments.

Two sources feed one processor. On startup the scanner replays every
assignment event between the persisted watermark and the current chain
height, strictly in ``(block, log_index)`` order. Afterwards the live
subscriber receives new events and hands them to a small pool of worker
threads, sharded by task id so that one task is never handled twice in
parallel by the live path.

Both paths go through ``TaskProcessor``: idempotency check, fresh fetch
of the task, ownership/state gate, topic handler, retried submission,
and only then the durable "processed" mark. A crash anywhere before the
mark simply means the task is attempted again on the next delivery.
"""
