"""
Middleware abstraction and pipeline composition.

A middleware wraps a send function with pre/post behavior and returns a new
send function (decorator pattern). The pipeline keeps an ordered, named
collection of middleware and composes them around a transport: the first
entry is the outermost wrapper, the last one is closest to the wire.

Example:
    >>> pipeline = MiddlewarePipeline([RetryMiddleware(), RateLimitMiddleware(auth)])
    >>> pipeline.add(LoggingMiddleware(logging.getLogger("canvas.http")))
    >>> send = pipeline.build(transport.send)
    >>> response = send(HttpRequest("GET", url))
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from typing import ClassVar, Self

from canvaslms._transport import SendFunction


class Middleware(ABC):
    """
    Abstract base class for request middleware.

    Subclasses declare a unique `name` (their identity inside a pipeline)
    and implement `wrap()`. Middleware must be stateless or guard their
    state with locks, since a single instance serves concurrent requests.

    Example:
        >>> class HeaderMiddleware(Middleware):
        ...     name = "user-agent"
        ...
        ...     def wrap(self, next_send):
        ...         def send(request):
        ...             return next_send(request.with_header("User-Agent", "my-app"))
        ...         return send
    """

    name: ClassVar[str] = ""

    @abstractmethod
    def wrap(self, next_send: SendFunction) -> SendFunction:
        """
        Wrap the next send function in the chain.

        Args:
            next_send: The send function this middleware delegates to.

        Returns:
            A send function adding this middleware's behavior.
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class MiddlewarePipeline:
    """
    Ordered, named collection of middleware.

    Adding a middleware whose name is already present replaces the existing
    entry in place, keeping its position. Removing an unknown name is a no-op.

    Args:
        middleware: Initial middleware, outermost first.
    """

    def __init__(self, middleware: Iterable[Middleware] = ()):
        self._entries: dict[str, Middleware] = {}
        for m in middleware:
            self.add(m)

    def add(
        self,
        middleware: Middleware,
        *,
        before: str | None = None,
        after: str | None = None,
    ) -> Self:
        """
        Add or replace a middleware.

        Args:
            middleware: The middleware to add.
            before: Insert just before (outside of) this entry.
            after: Insert just after (inside of) this entry.

        Raises:
            ValueError: If the anchor given in `before`/`after` is unknown.
        """
        assert middleware.name, f"{type(middleware).__name__} must declare a name."
        assert not (before and after), "Use either 'before' or 'after', not both."

        anchor = before or after
        if anchor is None or anchor == middleware.name:
            self._entries[middleware.name] = middleware
            return self

        if anchor not in self._entries:
            raise ValueError(f"Unknown middleware '{anchor}'. Registered: {self.names()}")

        entries = [(n, m) for n, m in self._entries.items() if n != middleware.name]
        index = next(i for i, (n, _) in enumerate(entries) if n == anchor)
        entries.insert(index if before else index + 1, (middleware.name, middleware))
        self._entries = dict(entries)
        return self

    def remove(self, name: str) -> Middleware | None:
        """Remove a middleware by name, returning it (or None if absent)."""
        return self._entries.pop(name, None)

    def get(self, name: str) -> Middleware | None:
        return self._entries.get(name)

    def names(self) -> list[str]:
        return list(self._entries)

    def build(self, send: SendFunction) -> SendFunction:
        """
        Compose all middleware around `send`.

        The first middleware becomes the outermost wrapper.
        """
        for middleware in reversed(list(self._entries.values())):
            send = middleware.wrap(send)
        return send

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[Middleware]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"MiddlewarePipeline({self.names()})"
