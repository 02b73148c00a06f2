from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, or_, select, update

from cmdqueue.database import CommandJobRow, Database
from cmdqueue.errors import JobNotFound
from cmdqueue.models import CommandJob, JobStatus, TERMINAL_STATUSES
from cmdqueue.utils import as_utc, utcnow


def _to_job(row: CommandJobRow) -> CommandJob:
    return CommandJob(
        id=row.id,
        command_type=row.command_type,
        target_id=row.target_id,
        parameters=row.parameters,
        status=JobStatus(row.status),
        created_at=as_utc(row.created_at),
        executed_at=as_utc(row.executed_at),
        result=row.result,
        claimed_at=as_utc(row.claimed_at),
        retry_count=row.retry_count or 0,
        last_error=row.last_error,
    )


class JobStore:
    """
    The bot_commands table: mailbox between the control process and the worker.

    Every read returns detached CommandJob snapshots. There is no isolation
    between list_pending() and concurrent update() calls.
    """

    def __init__(self, database: Database):
        self.db = database

    def create(self, command_type: str, target_id: str, parameters: Optional[str] = None) -> int:
        row = CommandJobRow(
            command_type=command_type,
            target_id=target_id,
            parameters=parameters,
            status=JobStatus.PENDING.value,
            created_at=utcnow(),
        )
        with self.db.session() as session:
            session.add(row)
            session.flush()
            job_id = row.id
        return job_id

    def get(self, job_id: int) -> CommandJob:
        with self.db.session() as session:
            row = session.get(CommandJobRow, job_id)
            if row is None:
                raise JobNotFound(job_id)
            return _to_job(row)

    def update(self, job_id: int, status: JobStatus, executed_at: datetime, result: Optional[str]):
        """Unconditional write of a status transition. No check of the prior status."""
        with self.db.session() as session:
            changed = session.execute(
                update(CommandJobRow)
                .where(CommandJobRow.id == job_id)
                .values(status=JobStatus(status).value, executed_at=executed_at, result=result)
            ).rowcount
        if not changed:
            raise JobNotFound(job_id)

    def list_pending(self) -> List[CommandJob]:
        stmt = (
            select(CommandJobRow)
            .where(CommandJobRow.status == JobStatus.PENDING.value)
            .order_by(CommandJobRow.created_at.asc(), CommandJobRow.id.asc())
        )
        with self.db.session() as session:
            return [_to_job(r) for r in session.scalars(stmt).all()]

    # --- Conditional transitions ---

    def claim(self, job_id: int) -> bool:
        """pending -> in_progress. False when another tick or process got there first."""
        with self.db.session() as session:
            updated = session.execute(
                update(CommandJobRow)
                .where(CommandJobRow.id == job_id, CommandJobRow.status == JobStatus.PENDING.value)
                .values(status=JobStatus.IN_PROGRESS.value, claimed_at=utcnow())
            ).rowcount
        return updated == 1

    def expire_claims(self, cutoff: datetime, executed_at: datetime, result: str,
                      exclude: Iterable[int] = ()) -> List[int]:
        """
        in_progress -> failed for claims taken before ``cutoff``.

        Jobs in ``exclude`` (still running in this process) are left alone.
        Returns the ids that were expired.
        """
        stale = (
            select(CommandJobRow.id)
            .where(CommandJobRow.status == JobStatus.IN_PROGRESS.value)
            .where(or_(CommandJobRow.claimed_at.is_(None), CommandJobRow.claimed_at < cutoff))
        )
        exclude = list(exclude)
        if exclude:
            stale = stale.where(CommandJobRow.id.not_in(exclude))
        expired = []
        with self.db.session() as session:
            for job_id in session.scalars(stale).all():
                updated = session.execute(
                    update(CommandJobRow)
                    .where(CommandJobRow.id == job_id, CommandJobRow.status == JobStatus.IN_PROGRESS.value)
                    .values(status=JobStatus.FAILED.value, executed_at=executed_at, result=result)
                ).rowcount
                if updated:
                    expired.append(job_id)
        return expired

    def cancel_if_pending(self, job_id: int, executed_at: datetime, result: Optional[str]) -> bool:
        with self.db.session() as session:
            updated = session.execute(
                update(CommandJobRow)
                .where(CommandJobRow.id == job_id, CommandJobRow.status == JobStatus.PENDING.value)
                .values(status=JobStatus.CANCELLED.value, executed_at=executed_at, result=result)
            ).rowcount
        return updated == 1

    # --- Listings / maintenance ---

    def list_jobs(self, status: Optional[str] = None, limit: int = 50) -> List[CommandJob]:
        stmt = select(CommandJobRow)
        if status:
            stmt = stmt.where(CommandJobRow.status == JobStatus(status).value)
        # SQLite treats a negative LIMIT as no limit at all.
        limit = max(1, int(limit))
        stmt = stmt.order_by(CommandJobRow.created_at.desc(), CommandJobRow.id.desc()).limit(limit)
        with self.db.session() as session:
            return [_to_job(r) for r in session.scalars(stmt).all()]

    def all_jobs(self) -> List[CommandJob]:
        stmt = select(CommandJobRow).order_by(CommandJobRow.created_at.desc(), CommandJobRow.id.desc())
        with self.db.session() as session:
            return [_to_job(r) for r in session.scalars(stmt).all()]

    def counts_by_status(self) -> dict:
        with self.db.session() as session:
            rows = session.execute(
                select(CommandJobRow.status, func.count(CommandJobRow.id)).group_by(CommandJobRow.status)
            ).all()
        counts = {status.value: 0 for status in JobStatus}
        counts.update({status: count for status, count in rows})
        return counts

    def last_executed(self) -> Optional[CommandJob]:
        """Most recent job the worker finished (completed or failed)."""
        stmt = (
            select(CommandJobRow)
            .where(CommandJobRow.status.in_([JobStatus.COMPLETED.value, JobStatus.FAILED.value]))
            .where(CommandJobRow.executed_at.is_not(None))
            .order_by(CommandJobRow.executed_at.desc())
            .limit(1)
        )
        with self.db.session() as session:
            row = session.scalars(stmt).first()
            return _to_job(row) if row else None

    def delete_terminal_before(self, cutoff: datetime) -> int:
        with self.db.session() as session:
            deleted = session.execute(
                delete(CommandJobRow)
                .where(CommandJobRow.created_at < cutoff)
                .where(CommandJobRow.status.in_([s.value for s in TERMINAL_STATUSES]))
            ).rowcount
        return deleted
