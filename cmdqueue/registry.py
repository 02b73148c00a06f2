"""Handler registry - maps command types to the code that carries them out."""

from typing import Any, Callable, Dict, Iterable, List, Protocol, runtime_checkable

import structlog

from cmdqueue.errors import UnknownCommandType
from cmdqueue.models import command_tag

logger = structlog.get_logger()


@runtime_checkable
class Handler(Protocol):
    """
    Performs one command against the external platform.

    Returns the result to record, or raises (HandlerError or any other
    exception) to mark the job failed. May be slow.
    """

    def execute(self, target_id: str, parameters: Any) -> Any:
        ...


class FunctionHandler:
    """Adapts a plain ``(target_id, parameters) -> result`` callable to Handler."""

    def __init__(self, fn: Callable[[str, Any], Any]):
        self.fn = fn
        self.__doc__ = getattr(fn, "__doc__", None)

    def execute(self, target_id: str, parameters: Any) -> Any:
        return self.fn(target_id, parameters)

    def __repr__(self):
        return f"<FunctionHandler {getattr(self.fn, '__name__', self.fn)!r}>"


class HandlerRegistry:
    """
    Registry populated once at worker start.

    Registering a type twice replaces the earlier handler (last write wins).
    """

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def register(self, command_type, handler) -> None:
        tag = command_tag(command_type)
        if not isinstance(handler, Handler):
            if not callable(handler):
                raise TypeError(f"Handler for {tag} must be callable or implement execute()")
            handler = FunctionHandler(handler)

        if tag in self._handlers:
            logger.warning("handler_replaced", command_type=tag)
        self._handlers[tag] = handler
        logger.debug("handler_registered", command_type=tag)

    def handler(self, command_type):
        """Decorator form of register()."""
        def decorator(fn):
            self.register(command_type, fn)
            return fn
        return decorator

    def resolve(self, command_type) -> Handler:
        tag = command_tag(command_type)
        try:
            return self._handlers[tag]
        except KeyError:
            raise UnknownCommandType(tag) from None

    def validate(self, required: Iterable) -> None:
        """Fail at startup instead of at dispatch time when a kind has no handler."""
        missing = sorted({command_tag(kind) for kind in required} - set(self._handlers))
        if missing:
            raise UnknownCommandType(", ".join(missing))

    def kinds(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, command_type) -> bool:
        return command_tag(command_type) in self._handlers

    def __len__(self):
        return len(self._handlers)
