"""RuntimeContext: the process-wide collaborators for one run.

One instance per process invocation, passed by reference into the task runner.
It owns the cancellation signal, the lazily built model client, the retrying
transport and the remote tool provider cache, and tears them down once.
"""

import asyncio
import logging
import signal
from typing import Any, Callable

from tony.llm.cancellation import CancellationSignal
from tony.llm.client import LazyClient
from tony.llm.transport import RetryingTransport
from tony.secrets import get_secret
from tony.settings import get_setting
from tony.tools.local import LocalToolRegistry
from tony.tools.mcp import McpClientCache

logger = logging.getLogger(__name__)


class RuntimeContext:
    def __init__(
        self,
        settings: dict[str, Any],
        secrets_getter: Callable[[str], str | None] = get_secret,
        on_content: Callable[[str], None] | None = None,
        transport: Any = None,
        mcp: McpClientCache | None = None,
        local_tools: LocalToolRegistry | None = None,
    ) -> None:
        self.settings = settings
        self.on_content = on_content
        self.cancellation = CancellationSignal()
        self.client = LazyClient(settings, secrets_getter)
        self.transport = transport or RetryingTransport(
            get_client=self.client,
            cancellation=self.cancellation,
            max_retries=int(get_setting(settings, "retry.max_retries", 8)),
            base_delay=float(get_setting(settings, "retry.base_delay", 0.5)),
            jitter=bool(get_setting(settings, "retry.jitter", True)),
            stream_defect_retries=int(get_setting(settings, "retry.stream_defect_retries", 2)),
            extra_body=get_setting(settings, "llm.extra_body"),
        )
        self.mcp = mcp or McpClientCache(
            connect_timeout=float(get_setting(settings, "mcp.connect_timeout", 30.0)),
            call_timeout=float(get_setting(settings, "mcp.call_timeout", 60.0)),
            cancellation=self.cancellation,
        )
        self.local_tools = local_tools or LocalToolRegistry.with_defaults()
        self._closed = False

    def install_signal_handlers(self) -> None:
        """Trip the cancellation signal on SIGINT/SIGTERM."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.cancellation.trip, sig.name)
            except (NotImplementedError, RuntimeError):
                # Windows event loops do not support add_signal_handler
                signal.signal(sig, lambda signum, _frame: self.cancellation.trip(signal.Signals(signum).name))

    async def aclose(self) -> None:
        """Tear down provider sessions and the client exactly once."""
        if self._closed:
            return
        self._closed = True
        await self.mcp.shutdown()
        try:
            await self.client.close()
        except Exception as e:
            logger.warning("closing model client failed: %s", e)
