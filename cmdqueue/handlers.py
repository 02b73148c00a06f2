"""Handlers every worker ships with, plus loading of the platform-specific ones."""

import importlib
import json
import os
import platform
import socket

from cmdqueue.models import CommandKind
from cmdqueue.registry import HandlerRegistry
from cmdqueue.utils import utcnow


def echo_handler(target_id, parameters):
    """Echoes its parameters back; used to check the worker is picking jobs up."""
    return f"Test command processed: {json.dumps(parameters)}"


def make_diagnostic_handler(registry: HandlerRegistry):
    def diagnostic_handler(target_id, parameters):
        return {
            "target": target_id,
            "host": socket.gethostname(),
            "pid": os.getpid(),
            "python": platform.python_version(),
            "handlers": registry.kinds(),
            "time": utcnow().isoformat(),
        }
    return diagnostic_handler


def register_default_handlers(registry: HandlerRegistry) -> HandlerRegistry:
    registry.register(CommandKind.TEST, echo_handler)
    registry.register(CommandKind.DIAGNOSTIC, make_diagnostic_handler(registry))
    return registry


def load_handlers(spec: str, registry: HandlerRegistry) -> None:
    """
    Import ``package.module:function`` and call it with the registry.

    This is how the platform-connected worker plugs in KICK_USER, CLOSE_TICKET
    and friends without this package knowing about the platform.
    """
    module_name, _, func_name = spec.partition(":")
    if not module_name or not func_name:
        raise ValueError(f"Handler spec must look like 'package.module:function', got {spec!r}")
    module = importlib.import_module(module_name)
    register = getattr(module, func_name)
    register(registry)
