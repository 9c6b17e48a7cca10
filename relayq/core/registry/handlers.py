# relayq/core/registry/handlers.py
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Iterator, MutableMapping

from relayq.core.errors import ErrorCode, RegistryError
from relayq.core.models.kinds import TaskKind

# async handler(ctx: TaskContext, payload) -> None; raising means the attempt failed
Handler = Callable[[Any, Any], Awaitable[None]]


class NotRegistered(RegistryError, KeyError):
    """Raised when no handler is registered for a task kind.

    Inherits from KeyError so MutableMapping.__contains__ works correctly
    (it catches KeyError to implement the ``in`` operator).
    """

    def __init__(self, kind: TaskKind | str) -> None:
        kind_name = getattr(kind, 'value', kind)
        RegistryError.__init__(
            self,
            message=f"no handler registered for task kind '{kind_name}'",
            code=ErrorCode.HANDLER_NOT_REGISTERED,
            notes=[f"requested kind: '{kind_name}'"],
            help_text='register the handler in build_registry() before starting the worker',
        )
        self.kind = kind


class DuplicateHandlerError(RegistryError):
    """Raised when a second handler is registered for the same kind."""

    def __init__(self, kind: TaskKind) -> None:
        super().__init__(
            message=f"duplicate handler for task kind '{kind.value}'",
            code=ErrorCode.HANDLER_DUPLICATE_KIND,
            help_text='each task kind has exactly one handler',
        )
        self.kind = kind


class HandlerRegistry(MutableMapping[TaskKind, Handler]):
    """Explicit mapping of task kind -> handler, built once at startup."""

    def __init__(self, initial: Dict[TaskKind, Handler] | None = None) -> None:
        self._data: Dict[TaskKind, Handler] = {}
        for kind, handler in (initial or {}).items():
            self.register(kind, handler)

    def __getitem__(self, key: TaskKind) -> Handler:
        try:
            return self._data[key]
        except KeyError:
            raise NotRegistered(key)

    def __setitem__(self, key: TaskKind, value: Handler) -> None:
        self.register(key, value)

    def __delitem__(self, key: TaskKind) -> None:
        try:
            del self._data[key]
        except KeyError:
            raise NotRegistered(key)

    def __iter__(self) -> Iterator[TaskKind]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def register(self, kind: TaskKind, handler: Handler) -> Handler:
        if kind in self._data:
            raise DuplicateHandlerError(kind)
        self._data[kind] = handler
        return handler

    def unregister(self, kind: TaskKind) -> None:
        self._data.pop(kind, None)

    def missing(self) -> list[TaskKind]:
        """Kinds with no handler yet."""
        return [kind for kind in TaskKind if kind not in self._data]
