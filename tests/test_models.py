"""Tests for job snapshots and outcomes."""

import pytest

from cmdqueue.models import CommandKind, JobStatus, command_tag


@pytest.mark.parametrize("status,terminal", [
    (JobStatus.PENDING, False),
    (JobStatus.IN_PROGRESS, False),
    (JobStatus.COMPLETED, True),
    (JobStatus.FAILED, True),
    (JobStatus.CANCELLED, True),
])
def test_terminal_statuses(status, terminal):
    assert status.is_terminal is terminal


def test_command_tag():
    assert command_tag(CommandKind.KICK_USER) == "KICK_USER"
    assert command_tag("  custom ") == "custom"
    with pytest.raises(ValueError):
        command_tag("")


def test_job_to_dict(enqueuer, store):
    job = store.get(enqueuer.enqueue("TEST", "t", {"a": [1, 2]}))

    data = job.to_dict()

    assert data["status"] == "pending"
    assert data["created_at"].endswith("+00:00")
    assert data["executed_at"] is None
    assert data["parameters"] == '{"a": [1, 2]}'
    assert job.params == {"a": [1, 2]}


def test_plain_string_parameters_passed_through(store):
    job = store.get(store.create("TEST", "t", "not json"))

    assert job.params == "not json"
