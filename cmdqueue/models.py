from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from cmdqueue.errors import HandlerError, JobCancelled, WaitTimeout
from cmdqueue.utils import iso, load_payload


class JobStatus(str, Enum):
    PENDING = "pending"
    # Only written when the dispatcher claims jobs (at_most_once = "enforced").
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


class CommandKind(str, Enum):
    """Command kinds the worker knows about. Any other non-empty tag is still accepted."""
    TEST = "TEST"
    KICK_USER = "KICK_USER"
    BAN_USER = "BAN_USER"
    TIMEOUT_USER = "TIMEOUT_USER"
    CLOSE_TICKET = "CLOSE_TICKET"
    DIAGNOSTIC = "DIAGNOSTIC"


def command_tag(command_type) -> str:
    """Normalise a CommandKind or string into the tag stored in the table."""
    tag = command_type.value if isinstance(command_type, Enum) else str(command_type or "")
    tag = tag.strip()
    if not tag:
        raise ValueError("command_type must be a non-empty tag")
    return tag


@dataclass(frozen=True)
class CommandJob:
    id: int
    command_type: str
    target_id: str
    parameters: Optional[str]
    status: JobStatus
    created_at: datetime
    executed_at: Optional[datetime] = None
    result: Optional[str] = None
    claimed_at: Optional[datetime] = None
    # Reserved columns, carried through untouched.
    retry_count: int = 0
    last_error: Optional[str] = None

    @property
    def params(self) -> Any:
        return load_payload(self.parameters)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        d["created_at"] = iso(self.created_at)
        d["executed_at"] = iso(self.executed_at)
        d["claimed_at"] = iso(self.claimed_at)
        return d

    def __repr__(self):
        return f"<CommandJob(id={self.id}, type='{self.command_type}', target='{self.target_id}', status='{self.status.value}')>"


class ErrorKind(str, Enum):
    HANDLER = "handler"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class WaitOutcome:
    success: bool
    result: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    job_id: Optional[int] = None

    def raise_for_error(self):
        if self.success:
            return self.result
        if self.error_kind is ErrorKind.TIMEOUT:
            raise WaitTimeout(self.error)
        if self.error_kind is ErrorKind.CANCELLED:
            raise JobCancelled(self.error)
        raise HandlerError(self.error)

    def to_dict(self) -> dict:
        return {
            "job_id": self.job_id,
            "success": self.success,
            "result": self.result,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
        }
