import json
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from cmdqueue.config import AT_MOST_ONCE_MODES
from cmdqueue.context import QueueContext
from cmdqueue.models import CommandJob, JobStatus
from cmdqueue.registry import HandlerRegistry
from cmdqueue.utils import utcnow

logger = structlog.get_logger()


def format_result(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, default=str)


def error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class Dispatcher:
    """
    Worker side polling loop.

    Every ``interval`` seconds it lists pending jobs and hands each one, in
    creation order, to a thread pool without waiting for it to finish.

    With ``at_most_once="enforced"`` each job is claimed (pending ->
    in_progress, conditional on the row still being pending) when a pool
    thread picks it up, so overlapping ticks or several worker processes
    never run the same job twice, and a job still queued in the pool can be
    cancelled. Claims older than ``claim_timeout`` seconds that no local
    handler is working on are failed at the start of each tick.

    With ``"best-effort"`` there is no claim: a job whose handler outlives
    the interval is still pending on the next tick and gets run again. That
    mode exists to reproduce the historical behaviour.
    """

    def __init__(
        self,
        context: QueueContext,
        registry: HandlerRegistry,
        interval: float = None,
        max_concurrent: int = None,
        at_most_once: str = None,
    ):
        cfg = context.config
        self.store = context.store
        self.registry = registry
        self.interval = float(interval if interval is not None else cfg.get("dispatch_interval", 2.0))
        self.max_concurrent = int(max_concurrent if max_concurrent is not None else cfg.get("max_concurrent", 4))
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {self.max_concurrent}")
        self.claim_timeout = float(cfg.get("claim_timeout", 300))
        self.mode = at_most_once or cfg.get("at_most_once", "enforced")
        if self.mode not in AT_MOST_ONCE_MODES:
            raise ValueError(f"at_most_once must be one of {', '.join(AT_MOST_ONCE_MODES)}, got {self.mode!r}")

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._inflight: Dict[Future, int] = {}
        self._lock = threading.Lock()
        self._running = False

    @property
    def enforced(self) -> bool:
        return self.mode == "enforced"

    # --- Lifecycle ---

    def start(self) -> None:
        """Run the loop on a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("dispatcher_already_running")
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="cmdqueue-dispatcher", daemon=True)
        self._thread.start()

    def stop(self, wait: bool = True) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=max(5.0, self.interval * 2))
            self._thread = None
        self._shutdown_executor(wait)

    def run_forever(self, should_stop: Callable[[], bool] = None) -> None:
        """Run the loop on the calling thread until stop() or should_stop() says so."""
        self._stop.clear()
        try:
            self._loop(should_stop)
        finally:
            self._shutdown_executor(wait=True)

    def _loop(self, should_stop: Callable[[], bool] = None) -> None:
        logger.info(
            "dispatcher_started",
            interval=self.interval,
            max_concurrent=self.max_concurrent,
            at_most_once=self.mode,
            handlers=self.registry.kinds(),
        )
        self._running = True
        while not self._stop.is_set():
            if should_stop and should_stop():
                logger.info("dispatcher_stop_requested")
                break
            try:
                self.tick()
            except Exception as e:
                logger.error("dispatch_tick_error", error=error_message(e))
            self._stop.wait(self.interval)
        self._running = False
        logger.info("dispatcher_stopped")

    def _shutdown_executor(self, wait: bool) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor:
            executor.shutdown(wait=wait)

    # --- Dispatch ---

    def tick(self) -> List[Future]:
        """One scan of the pending jobs. Returns the futures of the jobs handed off."""
        if self.enforced:
            self.expire_stale_claims()
        queued = self._inflight_ids() if self.enforced else set()
        futures = []
        for job in self.store.list_pending():
            if job.id in queued:
                continue
            futures.append(self._submit(job))
        if futures:
            logger.debug("dispatch_tick", dispatched=len(futures))
        return futures

    def expire_stale_claims(self) -> List[int]:
        """Fail in_progress jobs whose claim is older than ``claim_timeout`` and that no
        handler of this dispatcher is still working on."""
        message = f"Worker did not report a result within {self.claim_timeout:g}s of picking up the command"
        cutoff = utcnow() - timedelta(seconds=self.claim_timeout)
        expired = self.store.expire_claims(cutoff, utcnow(), message, exclude=self._inflight_ids())
        for job_id in expired:
            logger.warning("job_claim_expired", job_id=job_id, claim_timeout=self.claim_timeout)
        return expired

    def _inflight_ids(self) -> Set[int]:
        with self._lock:
            return set(self._inflight.values())

    def _submit(self, job: CommandJob) -> Future:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self.max_concurrent,
                                                    thread_name_prefix="cmdqueue-handler")
            future = self._executor.submit(self.process, job)
            self._inflight[future] = job.id
        future.add_done_callback(lambda f, job_id=job.id: self._finished(job_id, f))
        return future

    def _finished(self, job_id: int, future: Future) -> None:
        with self._lock:
            self._inflight.pop(future, None)
        if not future.cancelled() and future.exception() is not None:
            # Only storage errors get here; handler errors are recorded by process().
            logger.error("job_result_not_recorded", job_id=job_id, error=error_message(future.exception()))

    def process(self, job: CommandJob) -> Optional[JobStatus]:
        """
        Run the handler for one job and write the terminal status back.

        In enforced mode the job is claimed first, once a pool thread is free.
        Returns None when the claim is lost (cancelled while queued, or taken
        by another worker).
        """
        log = logger.bind(job_id=job.id, command_type=job.command_type, target_id=job.target_id)
        if self.enforced and not self.store.claim(job.id):
            log.info("job_claim_lost")
            return None
        log.info("job_started")
        try:
            handler = self.registry.resolve(job.command_type)
            value = handler.execute(job.target_id, job.params)
            if isinstance(value, Exception):
                raise value
        except Exception as e:
            message = error_message(e)
            self.store.update(job.id, JobStatus.FAILED, utcnow(), message)
            log.error("job_failed", error=message)
            return JobStatus.FAILED

        self.store.update(job.id, JobStatus.COMPLETED, utcnow(), format_result(value))
        log.info("job_completed")
        return JobStatus.COMPLETED

    def health(self) -> dict:
        with self._lock:
            inflight = len(self._inflight)
        running = self._running
        return {
            "healthy": running,
            "message": "running" if running else "stopped",
            "in_flight": inflight,
            "max_concurrent": self.max_concurrent,
            "interval": self.interval,
            "at_most_once": self.mode,
            "claim_timeout": self.claim_timeout,
        }
