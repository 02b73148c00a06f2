class QueueError(Exception):
    """Base class for command queue errors."""


class JobNotFound(QueueError, LookupError):
    def __init__(self, job_id):
        super().__init__(f"Command job {job_id} not found")
        self.job_id = job_id


class UnknownCommandType(QueueError):
    def __init__(self, command_type):
        super().__init__(f"Unknown command type: {command_type}")
        self.command_type = command_type


class HandlerError(QueueError):
    """Raised by handlers (or rebuilt from a failed job) to report a failed command."""


class WaitTimeout(QueueError):
    pass


class JobCancelled(QueueError):
    pass
