"""
Assembly job queue.

Celery over Redis runs project assembly outside the request cycle. When the
broker is unreachable at startup the API falls back to assembling in-process.
"""
