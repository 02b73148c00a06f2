import os
from typing import Any, Dict, List, Optional

from prettytable import PrettyTable

from cmdqueue.models import CommandJob, JobStatus
from cmdqueue.storage import JobStore
from cmdqueue.utils import utcnow

# Emojis for status display
STATUS_EMOJIS = {
    JobStatus.PENDING.value: '⏳',
    JobStatus.IN_PROGRESS.value: '⚙️',
    JobStatus.COMPLETED.value: '✅',
    JobStatus.FAILED.value: '❌',
    JobStatus.CANCELLED.value: '🚫',
}

JOB_HEADERS = ['ID', 'Type', 'Target', 'Status', 'Created', 'Executed', 'Result']

# --- Stop flag ---

STOP_FLAG = 'workers.stop'


def stop_requested(path: str = STOP_FLAG) -> bool:
    return os.path.exists(path)


def request_stop(path: str = STOP_FLAG) -> None:
    with open(path, 'w') as f:
        f.write('stop')


def clear_stop(path: str = STOP_FLAG) -> None:
    if os.path.exists(path):
        os.remove(path)

# --- Database Utilities ---

def get_job_summary(store: JobStore) -> Dict[str, int]:
    """Count of jobs for each status, every status present."""
    return store.counts_by_status()


def worker_activity(store: JobStore, window: float = 60) -> Dict[str, Any]:
    """
    The worker has no heartbeat; it counts as online when it finished a job
    less than ``window`` seconds ago.
    """
    last = store.last_executed()
    seconds = None
    if last is not None and last.executed_at is not None:
        seconds = (utcnow() - last.executed_at).total_seconds()
    return {
        'online': seconds is not None and seconds < window,
        'last_activity': last.executed_at.isoformat() if last and last.executed_at else None,
        'seconds_since_activity': seconds,
        'last_command': {
            'id': last.id,
            'type': last.command_type,
            'status': last.status.value,
            'result': last.result,
        } if last else None,
    }

# --- CLI Formatting ---

def _short(value: Optional[str], width: int = 40) -> str:
    if value is None:
        return ''
    return value if len(value) <= width else value[:width - 3] + '...'


def job_row(job: CommandJob) -> List[Any]:
    return [
        job.id,
        job.command_type,
        job.target_id,
        f"{STATUS_EMOJIS.get(job.status.value, '')} {job.status.value}",
        job.created_at.strftime('%Y-%m-%d %H:%M:%S'),
        job.executed_at.strftime('%Y-%m-%d %H:%M:%S') if job.executed_at else '',
        _short(job.result),
    ]


def print_job_table(headers: List[str], data: List[List[Any]]) -> str:
    """Formats rows as a table using PrettyTable."""
    table = PrettyTable()
    table.field_names = headers
    for row in data:
        table.add_row(row)

    table.align = 'l'
    return table.get_string()
