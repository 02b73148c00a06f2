"""Durable, polling-based command dispatch queue."""

from cmdqueue.cancel import Canceller
from cmdqueue.config import Config
from cmdqueue.context import QueueContext
from cmdqueue.enqueue import Enqueuer
from cmdqueue.errors import (
    HandlerError, JobCancelled, JobNotFound, QueueError, UnknownCommandType, WaitTimeout,
)
from cmdqueue.models import CommandJob, CommandKind, ErrorKind, JobStatus, WaitOutcome
from cmdqueue.registry import FunctionHandler, Handler, HandlerRegistry
from cmdqueue.waiter import ResultWaiter
from cmdqueue.worker import Dispatcher

__version__ = "0.1.0"
