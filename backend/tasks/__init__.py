"""RQ task definitions.

All RQ enqueue calls MUST import from this module (not services.*)
so that the worker resolves functions as `tasks.<name>`.

We define thin wrappers here so that __module__ is 'tasks',
which is what RQ serializes for job lookup.
"""

from logging_config import query_context


def execute_query_job(query_id: int) -> str | None:
    from services.query_jobs import execute_query

    with query_context(query_id=query_id):
        return execute_query(query_id)


def recover_zombie_queries_job() -> int:
    from services.query_recovery import recover_zombie_queries
    return recover_zombie_queries()
