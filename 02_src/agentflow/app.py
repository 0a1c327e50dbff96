"""Application bootstrap and lifecycle management."""

import asyncio
import os
from typing import Protocol

from .config import DEFAULT_AGENTS_FILE, Settings, resolve_db_path
from .directory import AgentDirectory, IAgentDirectory
from .engine import FlowEngine, SweepResult, TimeoutSweeper
from .inbound import InboundRouter
from .llm import LLMProvider
from .logging_config import get_logger
from .policy import IDecisionPolicy, LLMDecisionPolicy
from .storage import FlowStore, IFlowStore
from .tracker import ITracker, Tracker
from .transport import HttpTransport, IMessageTransport, IToolTransport, OutboxTransport

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Reset data between test runs."""
        ...


class Application:
    """Main application bootstrap.

    Collaborators passed to the constructor replace the ones built from
    the environment; tests use this to inject a scripted policy.
    """

    def __init__(
        self,
        db_path: str | None = None,
        settings: Settings | None = None,
        directory: IAgentDirectory | None = None,
        policy: IDecisionPolicy | None = None,
        transport: IMessageTransport | None = None,
        tool_transport: IToolTransport | None = None,
    ):
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._settings = settings or Settings.from_env()

        self._directory = directory
        self._policy = policy
        self._transport = transport
        self._tool_transport = tool_transport

        # Components (will be initialized in start())
        self._storage: IFlowStore | None = None
        self._tracker: ITracker | None = None
        self._http_transport: HttpTransport | None = None
        self._engine: FlowEngine | None = None
        self._sweeper: TimeoutSweeper | None = None
        self._inbound: InboundRouter | None = None
        self._sweep_task: asyncio.Task | None = None
        self._running = False

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Storage (no dependencies)
        self._storage = FlowStore(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. Tracker (depends on Storage)
        self._tracker = Tracker(self._storage)

        # 3. Agent directory
        if self._directory is None:
            self._directory = AgentDirectory.from_json_file(
                self._settings.agents_file or DEFAULT_AGENTS_FILE
            )
        logger.info("Agent directory initialized")

        # 4. Decision policy (depends on LLM + directory)
        if self._policy is None:
            self._policy = LLMDecisionPolicy(LLMProvider(), self._directory)
            logger.info("LLM decision policy initialized")

        # 5. Transports
        if self._transport is None:
            if self._settings.mail_gateway_url:
                self._http_transport = HttpTransport(self._settings.mail_gateway_url)
                self._transport = self._http_transport
                if self._tool_transport is None:
                    self._tool_transport = self._http_transport
                logger.info("Using mail gateway at %s", self._settings.mail_gateway_url)
            else:
                self._transport = OutboxTransport(self._storage)
                logger.info("Using outbox transport")

        # 6. Engine, sweeper and inbound router
        self._engine = FlowEngine(
            storage=self._storage,
            policy=self._policy,
            transport=self._transport,
            directory=self._directory,
            tracker=self._tracker,
            tool_transport=self._tool_transport,
            settings=self._settings,
        )
        self._sweeper = TimeoutSweeper(self._engine, self._directory, self._storage)
        self._inbound = InboundRouter(self._engine)

        # 7. Periodic sweep
        self._running = True
        if self._settings.sweep_interval_seconds > 0:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info(
                "Timeout sweep every %s seconds", self._settings.sweep_interval_seconds
            )
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        self._running = False
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        if self._http_transport:
            await self._http_transport.aclose()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> None:
        """Reset data between test runs."""
        if self._storage:
            await self._storage.clear()
            logger.info("Storage cleared")

    async def run_sweep(self) -> SweepResult:
        return await self.sweeper.process_timeouts()

    async def _sweep_loop(self) -> None:
        """Background timer for the timeout sweep."""
        while self._running:
            try:
                await asyncio.sleep(self._settings.sweep_interval_seconds)
                await self.sweeper.process_timeouts()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Timeout sweep error: %s", e, exc_info=True)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def storage(self) -> IFlowStore:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def engine(self) -> FlowEngine:
        """Get flow engine instance."""
        if not self._engine:
            raise RuntimeError("Application not started")
        return self._engine

    @property
    def sweeper(self) -> TimeoutSweeper:
        if not self._sweeper:
            raise RuntimeError("Application not started")
        return self._sweeper

    @property
    def inbound(self) -> InboundRouter:
        if not self._inbound:
            raise RuntimeError("Application not started")
        return self._inbound
