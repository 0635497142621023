"""
API Handlers: Session Endpoints

Endpoints:
- GET    /sessions?search=                 list (optional substring filter)
- POST   /api/sessions                     start a session
- POST   /api/stop                         stop a session
- GET    /api/sessions/{session_id}        fetch one session
- DELETE /api/sessions/{session_id}        purge a terminal session now
- GET    /api/find-by-group/{group_key}    exact group lookup
- GET    /api/search?term=&type=           index-backed search
- GET    /health                           liveness and session counts
- GET    /metrics                          Prometheus text
"""

from __future__ import annotations

from typing import Any

from cadence.api.router import CadenceRouter, Request, Response, access_log
from cadence.core.errors import InvalidInputError
from cadence.engine.service import SessionEngine, StartSessionRequest
from cadence.session.model import SessionView
from cadence.session.search import SearchKind


def _views(views: list[SessionView]) -> list[dict[str, Any]]:
    return [v.to_dict() for v in views]


class SessionHandler:
    """Maps HTTP-shaped requests onto SessionEngine operations."""

    __slots__ = ("_engine",)

    def __init__(self, engine: SessionEngine) -> None:
        self._engine = engine

    def register(self, router: CadenceRouter) -> CadenceRouter:
        router.add("GET", "/sessions", self.list_sessions)
        router.add("POST", "/api/sessions", self.start_session)
        router.add("POST", "/api/stop", self.stop_session)
        router.add("GET", "/api/sessions/{session_id}", self.get_session)
        router.add("DELETE", "/api/sessions/{session_id}", self.purge_session)
        router.add("GET", "/api/find-by-group/{group_key}", self.find_by_group)
        router.add("GET", "/api/search", self.search)
        router.add("GET", "/health", self.health)
        router.add("GET", "/metrics", self.metrics)
        return router

    async def list_sessions(self, request: Request) -> Response:
        views = self._engine.list_sessions(request.query("search"))
        return Response.json({
            "success": True,
            "count": len(views),
            "sessions": _views(views),
        })

    async def start_session(self, request: Request) -> Response:
        """
        Request:
            {
                "target_ref": "https://example.com/posts/42",
                "target_count": 10,
                "interval_seconds": 5,
                "group_key": "42",            (optional)
                "action_context": {...}       (optional)
            }
        """
        try:
            body = request.json()
        except ValueError as e:
            return Response.from_error(InvalidInputError.request("body", f"invalid JSON: {e}"))
        if body is None:
            return Response.from_error(InvalidInputError.request("body", "request body required"))

        parsed = StartSessionRequest.from_dict(body)
        if parsed.is_err():
            return Response.from_error(parsed.error)

        result = await self._engine.start_session(parsed.unwrap())
        if result.is_err():
            return Response.from_error(result.error)

        session_id = result.unwrap()
        view = self._engine.get_session(session_id)
        return Response.json({
            "success": True,
            "session_id": session_id,
            "session": view.unwrap().to_dict() if view.is_ok() else None,
        })

    async def stop_session(self, request: Request) -> Response:
        try:
            body = request.json() or {}
        except ValueError as e:
            return Response.from_error(InvalidInputError.request("body", f"invalid JSON: {e}"))

        session_id = body.get("session_id") if isinstance(body, dict) else None
        if not session_id or not isinstance(session_id, str):
            return Response.from_error(
                InvalidInputError.request("session_id", "session_id is required"),
            )

        result = await self._engine.stop_session(session_id)
        if result.is_err():
            return Response.from_error(result.error)
        return Response.json({"success": True, "session": result.unwrap().to_dict()})

    async def get_session(self, request: Request) -> Response:
        result = self._engine.get_session(request.path_params["session_id"])
        if result.is_err():
            return Response.from_error(result.error)
        return Response.json({"success": True, "session": result.unwrap().to_dict()})

    async def purge_session(self, request: Request) -> Response:
        session_id = request.path_params["session_id"]
        result = await self._engine.purge_session(session_id)
        if result.is_err():
            return Response.from_error(result.error)
        return Response.json({
            "success": True,
            "session_id": session_id,
            "removed": result.unwrap(),
        })

    async def find_by_group(self, request: Request) -> Response:
        group_key = request.path_params["group_key"]
        views = self._engine.find_by_group(group_key)
        return Response.json({
            "success": True,
            "group_key": group_key,
            "count": len(views),
            "sessions": _views(views),
        })

    async def search(self, request: Request) -> Response:
        term = request.query("term", "")
        kind = SearchKind.parse(request.query("type"))
        result = self._engine.search(term or "", kind)
        if result.is_err():
            return Response.from_error(result.error)
        views = result.unwrap()
        return Response.json({
            "success": True,
            "term": term,
            "type": kind.value,
            "count": len(views),
            "sessions": _views(views),
        })

    async def health(self, request: Request) -> Response:
        return Response.json(self._engine.health())

    async def metrics(self, request: Request) -> Response:
        return Response(
            status=200,
            body=self._engine.metrics_text().encode(),
            headers={"content-type": "text/plain; version=0.0.4"},
        )


def build_router(engine: SessionEngine, prefix: str = "") -> CadenceRouter:
    """Router with every session endpoint registered."""
    router = CadenceRouter(prefix=prefix)
    router.use(access_log)
    return SessionHandler(engine).register(router)
