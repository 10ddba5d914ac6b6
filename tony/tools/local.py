"""Handlers for explicit task tools that have no remote provider."""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

LocalToolHandler = Callable[[dict[str, Any]], Awaitable[Any]]


async def fetch_foo(args: dict[str, Any]) -> dict[str, Any]:
    """Example tool: returns a mock Foo record."""
    return {
        "success": True,
        "data": {
            "id": args.get("id") or "default",
            "name": "Foo Item",
            "value": 42,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


class LocalToolRegistry:
    """Name -> async handler. Unregistered names get a stub response echoing the arguments."""

    def __init__(self, handlers: dict[str, LocalToolHandler] | None = None) -> None:
        self._handlers: dict[str, LocalToolHandler] = dict(handlers or {})

    @classmethod
    def with_defaults(cls) -> "LocalToolRegistry":
        return cls({"fetchFoo": fetch_foo})

    def register(self, name: str, handler: LocalToolHandler) -> None:
        self._handlers[name] = handler

    async def call(self, name: str, args: dict[str, Any]) -> Any:
        handler = self._handlers.get(name)
        if handler is None:
            logger.debug("local tool %s has no handler, returning stub", name)
            return {"result": f"Stub response for {name}", "args": args}
        return await handler(args)
