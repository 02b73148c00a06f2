"""Tests for the cmdqueuectl command line."""

import json

import pytest
from click.testing import CliRunner

from cmdqueue.cli import cli, coerce_value
from cmdqueue.cli_utils import request_stop
from cmdqueue.config import Config
from cmdqueue.context import QueueContext
from cmdqueue.models import JobStatus
from cmdqueue.utils import utcnow


def register_stopper(registry):
    """Handler module for `worker start --handlers`: asks the worker to stop."""
    registry.register("STOP_WORKER", lambda target, params: request_stop(params["flag"]))


@pytest.fixture
def cfg_path(tmp_path):
    path = tmp_path / "cfg.json"
    path.write_text(json.dumps({
        "database_url": f"sqlite:///{tmp_path / 'cli.db'}",
        "dispatch_interval": 0.05,
        "wait_poll_interval": 0.05,
        "log_level": "WARNING",
    }))
    return str(path)


@pytest.fixture
def run(cfg_path):
    runner = CliRunner()

    def invoke(*args):
        return runner.invoke(cli, ["--config", cfg_path, *args])

    return invoke


@pytest.fixture
def queue(cfg_path):
    ctx = QueueContext(Config(cfg_path))
    yield ctx
    ctx.close()


class TestEnqueueAndInspect:
    def test_enqueue_and_show(self, run, queue):
        result = run("enqueue", "KICK_USER", "12345", "--params", '{"reason": "spam"}')

        assert result.exit_code == 0, result.output
        assert "Enqueued job 1" in result.output
        shown = run("show", "1")
        data = json.loads(shown.output)
        assert data["status"] == "pending"
        assert data["parameters"] == '{"reason": "spam"}'
        assert queue.store.get(1).params == {"reason": "spam"}

    def test_invalid_params(self, run):
        result = run("enqueue", "TEST", "t", "--params", "{nope")

        assert result.exit_code == 2
        assert "not valid JSON" in result.output

    def test_empty_target(self, run):
        result = run("enqueue", "TEST", "")

        assert result.exit_code == 2
        assert "target_id" in result.output

    def test_show_unknown(self, run):
        result = run("show", "99")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_list(self, run):
        assert "No jobs found." in run("list").output
        run("enqueue", "TEST", "alpha")
        run("enqueue", "BAN_USER", "beta")

        output = run("list").output

        assert "alpha" in output and "beta" in output
        assert "BAN_USER" in run("list", "--status", "pending").output
        assert "No jobs found." in run("list", "--status", "completed").output

    def test_status(self, run):
        run("enqueue", "TEST", "t")

        result = run("status")

        assert result.exit_code == 0
        assert "Pending" in result.output
        assert "Worker: offline" in result.output


class TestWaitAndCancel:
    def test_wait_timeout_exit_code(self, run):
        run("enqueue", "TEST", "t")

        result = run("wait", "1", "--timeout", "0.2")

        assert result.exit_code == 3
        assert "timeout" in result.output

    def test_wait_failed_exit_code(self, run, queue):
        run("enqueue", "KICK_USER", "1")
        queue.store.update(1, JobStatus.FAILED, utcnow(), "member not found")

        result = run("wait", "1", "--timeout", "1")

        assert result.exit_code == 2
        assert "member not found" in result.output

    def test_wait_completed(self, run, queue):
        run("enqueue", "TEST", "t")
        queue.store.update(1, JobStatus.COMPLETED, utcnow(), "done")

        result = run("wait", "1")

        assert result.exit_code == 0
        assert "completed: done" in result.output

    def test_enqueue_wait_timeout(self, run):
        result = run("enqueue", "TEST", "t", "--wait", "--timeout", "0.1")

        assert result.exit_code == 3

    def test_cancel(self, run):
        run("enqueue", "TEST", "t")

        first = run("cancel", "1", "--reason", "oops")
        second = run("cancel", "1")

        assert first.exit_code == 0
        assert "cancelled" in first.output
        assert second.exit_code == 1
        assert "no longer pending" in second.output
        assert run("wait", "1").exit_code == 4

    def test_cancel_unknown(self, run):
        result = run("cancel", "5")

        assert result.exit_code == 1
        assert "not found" in result.output


class TestWorker:
    def test_worker_processes_jobs_until_stop_flag(self, run, queue, tmp_path):
        flag = str(tmp_path / "workers.stop")
        run("enqueue", "TEST", "test-target", "--params", '{"message": "hi"}')
        run("enqueue", "STOP_WORKER", "self", "--params", json.dumps({"flag": flag}))

        result = run("worker", "start", "--handlers", "tests.test_cli:register_stopper",
                     "--stop-flag", flag)

        assert result.exit_code == 0, result.output
        assert "enforced" in result.output
        job = queue.store.get(1)
        assert job.status is JobStatus.COMPLETED
        assert job.result == 'Test command processed: {"message": "hi"}'
        assert queue.store.get(2).status is JobStatus.COMPLETED

    def test_worker_refuses_missing_handlers(self, run):
        result = run("worker", "start", "--require", "KICK_USER")

        assert result.exit_code == 1
        assert "Missing handlers: KICK_USER" in result.output

    def test_worker_stop_writes_flag(self, run, tmp_path):
        flag = tmp_path / "workers.stop"

        result = run("worker", "stop", "--stop-flag", str(flag))

        assert result.exit_code == 0
        assert flag.exists()


class TestMaintenance:
    def test_cleanup(self, run):
        result = run("cleanup", "--days", "30")

        assert result.exit_code == 0
        assert "No old jobs" in result.output

    def test_cleanup_negative_days(self, run):
        assert run("cleanup", "--days", "-1").exit_code == 2

    def test_export_to_file(self, run, tmp_path):
        run("enqueue", "TEST", "a")
        out = tmp_path / "export.json"

        result = run("export", "--output", str(out))

        assert result.exit_code == 0
        assert json.loads(out.read_text())[0]["target_id"] == "a"


class TestConfigCommands:
    def test_set_and_show(self, run, cfg_path):
        assert run("config", "set", "retention_days", "7").exit_code == 0
        assert Config(cfg_path).get("retention_days") == 7

        output = run("config", "show").output
        assert "retention_days: 7" in output

    def test_set_invalid_mode(self, run):
        assert run("config", "set", "at_most_once", "sometimes").exit_code == 2

    @pytest.mark.parametrize("raw,expected", [("3", 3), ("0.5", 0.5), ("true", True), ("False", False), ("abc", "abc")])
    def test_coerce_value(self, raw, expected):
        assert coerce_value(raw) == expected
