import json
from datetime import timedelta

import structlog

from cmdqueue.context import QueueContext
from cmdqueue.utils import utcnow

logger = structlog.get_logger()


class RetentionManager:
    """Age-based cleanup and export of the job table (it doubles as an audit log)."""

    def __init__(self, context: QueueContext):
        self.store = context.store
        self.default_days = int(context.config.get("retention_days", 30))

    def cleanup_old_jobs(self, days_old: int = None) -> int:
        """Delete completed/failed/cancelled jobs created more than ``days_old`` days ago."""
        days_old = self.default_days if days_old is None else int(days_old)
        if days_old < 0:
            raise ValueError("days_old must be >= 0")
        cutoff = utcnow() - timedelta(days=days_old)
        deleted = self.store.delete_terminal_before(cutoff)
        logger.info("retention_sweep", days=days_old, deleted=deleted)
        return deleted

    def export(self) -> list:
        return [job.to_dict() for job in self.store.all_jobs()]

    def export_json(self, fp) -> int:
        rows = self.export()
        json.dump(rows, fp, indent=2)
        return len(rows)
