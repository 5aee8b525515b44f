"""
Wires sessions together from :mod:`maestro.config` settings.

The API and the CLI both build their :class:`~maestro.agent.session.ChatSession` objects here, so
the choice of tool back-end (MCP service or the in-process registry) is made in one place.
"""

from __future__ import annotations

import logging
from typing import (
    Any,
    Callable,
)

from maestro.agent.mcp_client import McpToolInvoker
from maestro.agent.orchestrator import TaskUpdateCallback
from maestro.agent.session import (
    ChatSession,
    MessageListener,
)
from maestro.agent.tool_executor import (
    RegistryToolInvoker,
    ToolInvoker,
)
from maestro.core.schema import ModelProfile
from maestro.llm.channel import RemoteChannel
from maestro.llm.dispatcher import GenerationDispatcher
from maestro.llm.ollama import OllamaClient

logger = logging.getLogger(__name__)


class SessionFactory:
    """
    Builds sessions that share one HTTP client, one tool invoker and (optionally) one channel.

    Each session, planner and orchestrated task still gets its own dispatcher.
    """

    def __init__(
        self,
        settings: Any,
        client: OllamaClient | None = None,
        invoker: ToolInvoker | None = None,
        channel: RemoteChannel | None = None,
    ) -> None:
        self.settings = settings
        self.client = client or OllamaClient(timeout=settings.REQUEST_TIMEOUT)
        self.invoker = invoker or self._default_invoker(settings)
        self.channel = channel

    @staticmethod
    def _default_invoker(settings: Any) -> ToolInvoker:
        if settings.MCP_URL:
            logger.info("Using MCP tool service at %s", settings.MCP_URL)
            return McpToolInvoker(settings.MCP_URL, settings.MCP_API_KEY or "")
        logger.info("Using in-process tool registry")
        return RegistryToolInvoker()

    def dispatcher(self) -> GenerationDispatcher:
        return GenerationDispatcher(client=self.client, invoker=self.invoker, channel=self.channel)

    @property
    def dispatcher_factory(self) -> Callable[[], GenerationDispatcher]:
        return self.dispatcher

    async def create(
        self,
        profile: ModelProfile | None = None,
        on_message: MessageListener | None = None,
        on_task_update: TaskUpdateCallback | None = None,
    ) -> ChatSession:
        """
        Build a session for *profile* (default: from settings) with the current tool list.

        A tool service that cannot be reached leaves the session without tools instead of failing.
        """
        session = ChatSession(
            profile or ModelProfile.from_settings(self.settings),
            self.dispatcher_factory,
            max_concurrent_tasks=self.settings.MAX_CONCURRENT_TASKS,
            on_message=on_message,
            on_task_update=on_task_update,
        )
        try:
            session.set_tools(await self.invoker.list_tools())
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not list tools, session %s starts without tools: %s", session.id, exc)
        logger.info("Session %s created with %d tool(s)", session.id, len(session.tools))
        return session

    async def aclose(self) -> None:
        await self.client.aclose()
        if isinstance(self.invoker, McpToolInvoker):
            await self.invoker.aclose()
