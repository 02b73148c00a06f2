from typing import Any

import structlog

from cmdqueue.context import QueueContext
from cmdqueue.models import command_tag
from cmdqueue.utils import dump_payload

logger = structlog.get_logger()


class Enqueuer:
    """Producer side: drops a pending command into the store for the worker to pick up."""

    def __init__(self, context: QueueContext):
        self.store = context.store

    def enqueue(self, command_type, target_id: str, parameters: Any = None) -> int:
        tag = command_tag(command_type)
        target = str(target_id).strip() if target_id is not None else ""
        if not target:
            raise ValueError("target_id must be non-empty")

        # Storage errors propagate to the caller.
        job_id = self.store.create(tag, target, dump_payload(parameters))
        logger.info("job_enqueued", job_id=job_id, command_type=tag, target_id=target)
        return job_id
