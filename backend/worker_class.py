"""RQ worker for the relay queues.

Launch with:
    rq worker --worker-class worker_class.RelayWorker llm-claude llm-ollama llm-local --with-scheduler

One worker per queue keeps a slow local model from delaying Claude jobs:
    rq worker --worker-class worker_class.RelayWorker llm-ollama

Started without queue names (``python worker_class.py``) it listens on every
provider queue.
"""

from __future__ import annotations

import os

from rq import SimpleWorker

from logging_config import setup_logging


def relay_queue_names() -> list[str]:
    """Every provider queue, in registry order, without duplicates."""
    from providers import PROVIDER_REGISTRY

    names: list[str] = []
    for adapter_cls in PROVIDER_REGISTRY.values():
        if adapter_cls.queue not in names:
            names.append(adapter_cls.queue)
    return names


class RelayWorker(SimpleWorker):
    def __init__(self, queues=None, *args, **kwargs):
        setup_logging(f"Worker-{os.getpid()}")
        super().__init__(queues or relay_queue_names(), *args, **kwargs)

    def work(self, *args, **kwargs):
        kwargs.setdefault("with_scheduler", True)
        return super().work(*args, **kwargs)


if __name__ == "__main__":
    import redis as redis_lib

    from config import settings

    RelayWorker(connection=redis_lib.from_url(settings.REDIS_URL)).work()
