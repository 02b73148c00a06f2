import structlog

from cmdqueue.context import QueueContext
from cmdqueue.utils import utcnow

logger = structlog.get_logger()

DEFAULT_REASON = "Cancelled manually"


class Canceller:
    def __init__(self, context: QueueContext):
        self.store = context.store

    def cancel(self, job_id: int, reason: str = None) -> bool:
        """
        Move a still-pending job to cancelled.

        Returns False when the job has already left pending and raises
        JobNotFound for unknown ids. A dispatcher running without claims may
        still overwrite the cancellation if it read the job before this landed.
        """
        if self.store.cancel_if_pending(job_id, utcnow(), reason or DEFAULT_REASON):
            logger.info("job_cancelled", job_id=job_id)
            return True

        job = self.store.get(job_id)
        logger.warning("cancel_rejected", job_id=job_id, status=job.status.value)
        return False
