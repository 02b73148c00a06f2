import json

from flask import Flask, Response, jsonify, request

from cmdqueue.cancel import Canceller
from cmdqueue.cli_utils import get_job_summary, worker_activity
from cmdqueue.context import QueueContext
from cmdqueue.enqueue import Enqueuer
from cmdqueue.errors import JobNotFound
from cmdqueue.models import CommandKind
from cmdqueue.retention import RetentionManager
from cmdqueue.utils import utcnow
from cmdqueue.waiter import ResultWaiter


def create_app(context: QueueContext) -> Flask:
    """JSON API the admin panel uses to talk to the worker through the queue."""
    app = Flask(__name__)
    enqueuer = Enqueuer(context)
    waiter = ResultWaiter(context)
    canceller = Canceller(context)
    retention = RetentionManager(context)
    store = context.store

    @app.errorhandler(JobNotFound)
    def not_found(e):
        return jsonify(error=str(e)), 404

    @app.errorhandler(ValueError)
    def bad_request(e):
        return jsonify(error=str(e)), 400

    def _submit(command_type, target_id, parameters, wait, timeout):
        if wait and timeout is not None:
            try:
                timeout = float(timeout)
            except (TypeError, ValueError):
                raise ValueError(f"timeout must be a number of seconds, got {timeout!r}")
        job_id = enqueuer.enqueue(command_type, target_id, parameters)
        if not wait:
            return jsonify(id=job_id, status="pending"), 201
        outcome = waiter.wait_for_result(job_id, timeout)
        return jsonify(id=job_id, **outcome.to_dict()), 201

    @app.route("/api/commands")
    def list_commands():
        limit = request.args.get("limit", 50, type=int)
        jobs = store.list_jobs(request.args.get("status") or None, limit=limit)
        return jsonify(commands=[j.to_dict() for j in jobs], counts=get_job_summary(store))

    @app.route("/api/commands/<int:job_id>")
    def get_command(job_id):
        return jsonify(store.get(job_id).to_dict())

    @app.route("/api/commands", methods=["POST"])
    def create_command():
        body = request.get_json(silent=True) or {}
        return _submit(
            body.get("command_type"),
            body.get("target_id"),
            body.get("parameters"),
            bool(body.get("wait", False)),
            body.get("timeout"),
        )

    @app.route("/api/commands/test", methods=["POST"])
    def test_command():
        body = request.get_json(silent=True) or {}
        return _submit(CommandKind.TEST, "test-target", {"message": "Test from web interface"},
                       bool(body.get("wait", False)), body.get("timeout"))

    @app.route("/api/commands/<int:job_id>/cancel", methods=["POST"])
    def cancel_command(job_id):
        body = request.get_json(silent=True) or {}
        if not canceller.cancel(job_id, body.get("reason")):
            return jsonify(error=f"Command {job_id} already picked up or finished"), 404
        return jsonify(success=True, id=job_id)

    @app.route("/api/worker/status")
    def worker_status():
        return jsonify(worker_activity(store, float(context.config.get("activity_window", 60))))

    @app.route("/api/system/cleanup", methods=["POST"])
    def cleanup():
        body = request.get_json(silent=True) or {}
        deleted = retention.cleanup_old_jobs(body.get("days"))
        return jsonify(success=True, deleted=deleted, timestamp=utcnow().isoformat())

    @app.route("/api/system/export")
    def export():
        payload = json.dumps(retention.export(), indent=2)
        filename = f"bot_commands_export_{int(utcnow().timestamp())}.json"
        return Response(payload, mimetype="application/json",
                        headers={"Content-Disposition": f"attachment; filename={filename}"})

    return app


if __name__ == "__main__":
    ctx = QueueContext()
    print("Starting command queue API at http://localhost:5000")
    create_app(ctx).run(port=5000, debug=False, threaded=True)
