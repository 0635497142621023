"""
Session Engine: Public Facade

Wires the store, timers, scheduler, cleanup and search together and
exposes the operations used by the transport adapter and the CLI. Every
operation returns a Result; domain failures are never raised.

Usage:
    async with SessionEngine(resolver, executor) as engine:
        result = await engine.start_session(StartSessionRequest(
            target_ref="https://example.com/posts/42",
            target_count=10,
            interval_seconds=5,
        ))
        view = engine.get_session(result.unwrap()).unwrap()
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Union

from cadence import __version__
from cadence.actions.http import HttpActionExecutor, HttpGroupResolver
from cadence.actions.protocols import ActionExecutor, GroupResolver
from cadence.core.config import EngineConfig
from cadence.core.errors import CadenceError, InvalidInputError, NotFoundError
from cadence.core.types import Result, Ok, Err, utc_now
from cadence.engine.scheduler import SessionScheduler
from cadence.engine.timers import LoopTimerService, TimerRegistry, TimerService
from cadence.observability.metrics import EngineMetrics, MetricsCollector
from cadence.session.model import SessionView
from cadence.session.search import SearchKind, SessionSearch
from cadence.session.store import IndexedSessionStore

logger = logging.getLogger(__name__)


# =============================================================================
# REQUEST
# =============================================================================
def _coerce_int(data: Mapping[str, Any], *names: str) -> Any:
    """First present field among `names`; numeric strings become ints."""
    for name in names:
        if name in data and data[name] is not None:
            value = data[name]
            if isinstance(value, str):
                try:
                    return int(value.strip())
                except ValueError:
                    return value
            return value
    return None


@dataclass(frozen=True)
class StartSessionRequest:
    """Parameters of a new session."""
    target_ref: str
    target_count: int
    interval_seconds: int
    action_context: Mapping[str, Any] = field(default_factory=dict)
    group_key: Optional[str] = None

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
    ) -> Result[StartSessionRequest, InvalidInputError]:
        """
        Build a request from a transport body.

        Also accepts the short field names `url`, `amount` and
        `interval`. Value checks are left to the scheduler.
        """
        if not isinstance(data, Mapping):
            return Err(InvalidInputError.request("body", "expected a JSON object"))

        target_ref = data.get("target_ref", data.get("url"))
        if target_ref is not None and not isinstance(target_ref, str):
            return Err(InvalidInputError.request("target_ref", "expected a string"))

        action_context = data.get("action_context") or {}
        if not isinstance(action_context, Mapping):
            return Err(InvalidInputError.request("action_context", "expected an object"))

        group_key = data.get("group_key")
        if group_key is not None and not isinstance(group_key, (str, int)):
            return Err(InvalidInputError.request("group_key", "expected a string"))

        return Ok(cls(
            target_ref=target_ref or "",
            target_count=_coerce_int(data, "target_count", "amount"),
            interval_seconds=_coerce_int(data, "interval_seconds", "interval"),
            action_context=dict(action_context),
            group_key=str(group_key) if group_key is not None else None,
        ))


# =============================================================================
# ENGINE
# =============================================================================
class SessionEngine:
    """
    The repeating-action session engine.

    Collaborators are injected; `from_config` builds the HTTP ones
    from an EngineConfig. Pass a ManualTimerService to drive time
    explicitly (tests, simulations).
    """

    def __init__(
        self,
        resolver: GroupResolver,
        executor: ActionExecutor,
        config: Optional[EngineConfig] = None,
        timer_service: Optional[TimerService] = None,
        metrics: Optional[EngineMetrics] = None,
        store: Optional[IndexedSessionStore] = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._store = store if store is not None else IndexedSessionStore()
        self._timers = TimerRegistry(timer_service or LoopTimerService())
        self._metrics = metrics or EngineMetrics(MetricsCollector())
        self._scheduler = SessionScheduler(
            self._store,
            resolver,
            executor,
            self._timers,
            config=self._config.scheduler,
            metrics=self._metrics,
        )
        self._search = SessionSearch(self._store)
        self._owned: list[Any] = []
        self._started_at: Optional[datetime] = None

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        resolver: Optional[GroupResolver] = None,
        executor: Optional[ActionExecutor] = None,
        timer_service: Optional[TimerService] = None,
    ) -> SessionEngine:
        """
        Build an engine whose missing collaborators are the HTTP ones.

        Raises:
            ValueError: a needed collaborator is not configured
        """
        owned: list[Any] = []
        if resolver is None:
            resolver = HttpGroupResolver.from_config(config.http)
            owned.append(resolver)
        if executor is None:
            executor = HttpActionExecutor.from_config(
                config.http, timeout=config.scheduler.action_timeout_seconds,
            )
            owned.append(executor)
        engine = cls(resolver, executor, config=config, timer_service=timer_service)
        engine._owned = owned
        return engine

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def start(self) -> None:
        if self._started_at is None:
            self._started_at = utc_now()
            logger.info("Session engine %s started", __version__)

    async def shutdown(self) -> None:
        await self._scheduler.shutdown()
        for collaborator in self._owned:
            await collaborator.aclose()
        self._owned.clear()

    async def __aenter__(self) -> SessionEngine:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------
    async def start_session(
        self,
        request: StartSessionRequest,
    ) -> Result[str, CadenceError]:
        return await self._scheduler.start_session(
            request.target_ref,
            request.target_count,
            request.interval_seconds,
            action_context=request.action_context,
            group_key=request.group_key,
        )

    async def stop_session(self, session_id: str) -> Result[SessionView, CadenceError]:
        return await self._scheduler.stop_session(session_id)

    async def purge_session(self, session_id: str) -> Result[bool, CadenceError]:
        return await self._scheduler.purge_session(session_id)

    def get_session(self, session_id: str) -> Result[SessionView, CadenceError]:
        session = self._store.get(session_id)
        if session is None:
            return Err(NotFoundError.session(session_id))
        return Ok(session.view())

    def list_sessions(self, search: Optional[str] = None) -> list[SessionView]:
        return self._search.list_sessions(search)

    def find_by_group(self, group_key: str) -> list[SessionView]:
        return self._search.find_by_group(group_key)

    def search(
        self,
        term: str,
        kind: Union[SearchKind, str, None] = SearchKind.ANY,
    ) -> Result[list[SessionView], CadenceError]:
        if not isinstance(kind, SearchKind):
            kind = SearchKind.parse(kind)
        return self._search.search(term, kind)

    def health(self) -> dict[str, Any]:
        """Liveness summary with session counts per state."""
        counts = self._store.count_by_state()
        now = utc_now()
        uptime = (now - self._started_at).total_seconds() if self._started_at else 0.0
        return {
            "status": "shut_down" if self._scheduler.closed else "ok",
            "version": __version__,
            "timestamp": now.isoformat(),
            "uptime_seconds": round(uptime, 3),
            "sessions": {
                "total": len(self._store),
                **{state.value: count for state, count in counts.items()},
            },
        }

    def metrics_text(self) -> str:
        return self._metrics.collector.export_prometheus()

    async def quiesce(self) -> None:
        await self._scheduler.quiesce()

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------
    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def store(self) -> IndexedSessionStore:
        return self._store

    @property
    def timers(self) -> TimerRegistry:
        return self._timers

    @property
    def scheduler(self) -> SessionScheduler:
        return self._scheduler

    @property
    def metrics(self) -> EngineMetrics:
        return self._metrics
