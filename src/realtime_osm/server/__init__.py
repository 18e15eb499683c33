"""Extract server: task reconciliation controller and per-task workers.

One asyncio event loop runs every state transition. Worker callbacks,
timer fires and tool completions are serialized on that loop, so a worker
never needs a lock; parallelism comes from the external tools (osmupdate,
osmconvert) and HTTP downloads running in the background.
"""
