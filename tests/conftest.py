"""Pytest configuration and fixtures."""

import threading

import pytest

from cmdqueue.cancel import Canceller
from cmdqueue.config import Config
from cmdqueue.context import QueueContext
from cmdqueue.enqueue import Enqueuer
from cmdqueue.registry import HandlerRegistry
from cmdqueue.waiter import ResultWaiter
from cmdqueue.worker import Dispatcher

FAST = {
    "dispatch_interval": 0.05,
    "wait_poll_interval": 0.02,
    "wait_timeout": 5,
    "max_concurrent": 4,
}


@pytest.fixture
def config(tmp_path):
    return Config(str(tmp_path / "cmdqueue_config.json"), overrides=FAST)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'queue.db'}"


@pytest.fixture
def context(config, db_url):
    ctx = QueueContext(config, database_url=db_url)
    yield ctx
    ctx.close()


@pytest.fixture
def store(context):
    return context.store


@pytest.fixture
def enqueuer(context):
    return Enqueuer(context)


@pytest.fixture
def waiter(context):
    return ResultWaiter(context)


@pytest.fixture
def canceller(context):
    return Canceller(context)


@pytest.fixture
def registry():
    reg = HandlerRegistry()
    reg.register("TEST", lambda target, params: f"echo {params}")
    return reg


@pytest.fixture
def release():
    """Event that blocking handlers wait on; set at teardown so worker threads can exit."""
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def make_dispatcher(context, registry, release):
    created = []

    def factory(**kwargs):
        d = Dispatcher(context, kwargs.pop("registry", registry), **kwargs)
        created.append(d)
        return d

    yield factory
    release.set()
    for d in created:
        d.stop()
