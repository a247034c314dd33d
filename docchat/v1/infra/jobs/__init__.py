"""
Jobs infrastructure for background processing.

This package provides the durable work queue behind document processing
and webhook fan-out:
- Postgres-backed queue claimed with SELECT ... FOR UPDATE SKIP LOCKED
- Closed, registry-based handlers keyed by job type
- Bounded retries with a fixed reschedule delay
- Heartbeats and a visibility timeout to reclaim jobs of crashed workers
"""
