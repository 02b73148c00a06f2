import time

import structlog

from cmdqueue.context import QueueContext
from cmdqueue.models import ErrorKind, JobStatus, WaitOutcome

logger = structlog.get_logger()

CANCELLED_MESSAGE = "Command was cancelled"


class ResultWaiter:
    """
    Producer side: blocks the caller until a job is terminal or the timeout passes.

    This is a poll loop, not a notification: completion is observed at most
    ``poll_interval`` seconds after the worker writes it. A timeout leaves
    the job untouched; the worker may still finish it with nobody listening.
    """

    def __init__(self, context: QueueContext, poll_interval: float = None, default_timeout: float = None):
        self.store = context.store
        self.poll_interval = float(poll_interval if poll_interval is not None
                                   else context.config.get("wait_poll_interval", 1.0))
        self.default_timeout = float(default_timeout if default_timeout is not None
                                     else context.config.get("wait_timeout", 30))

    def wait_for_result(self, job_id: int, timeout: float = None) -> WaitOutcome:
        timeout = self.default_timeout if timeout is None else float(timeout)
        deadline = time.monotonic() + timeout

        while True:
            # JobNotFound (e.g. swept by retention mid-wait) propagates.
            job = self.store.get(job_id)

            if job.status is JobStatus.COMPLETED:
                return WaitOutcome(success=True, result=job.result, job_id=job_id)
            if job.status is JobStatus.FAILED:
                return WaitOutcome(success=False, error=job.result, error_kind=ErrorKind.HANDLER, job_id=job_id)
            if job.status is JobStatus.CANCELLED:
                return WaitOutcome(success=False, error=job.result or CANCELLED_MESSAGE,
                                   error_kind=ErrorKind.CANCELLED, job_id=job_id)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("wait_timeout", job_id=job_id, timeout=timeout, status=job.status.value)
                return WaitOutcome(
                    success=False,
                    error=f"Timeout: worker did not respond within {timeout:g}s",
                    error_kind=ErrorKind.TIMEOUT,
                    job_id=job_id,
                )
            time.sleep(min(self.poll_interval, remaining))
