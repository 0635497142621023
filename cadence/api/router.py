"""
Request Router: Transport-Agnostic Routing and Dispatch

Any HTTP server (or a test) turns its native request into a Request,
calls CadenceRouter.dispatch(), and writes back the Response.

Supports:
- Path parameter extraction ({name} segments, URL-decoded)
- Query string parsing
- Method-based dispatch with 404 / 405
- Middleware chain
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence
from urllib.parse import parse_qs, unquote, urlparse

from cadence.core.errors import (
    CadenceError,
    InvalidInputError,
    NotFoundError,
    SetupError,
)

logger = logging.getLogger(__name__)


@dataclass
class Request:
    """Transport-neutral request."""
    method: str
    path: str
    query_params: dict[str, list[str]] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    path_params: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_raw(
        cls,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        body: bytes = b"",
    ) -> Request:
        parsed = urlparse(url)
        return cls(
            method=method.upper(),
            path=parsed.path,
            query_params=parse_qs(parsed.query),
            headers={k.lower(): v for k, v in (headers or {}).items()},
            body=body,
        )

    def json(self) -> Any:
        """
        Parse the body as JSON; an empty body is None.

        Raises:
            ValueError: malformed JSON
        """
        if not self.body:
            return None
        return json.loads(self.body)

    def query(self, key: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(key, [])
        return values[0] if values else default

    def header(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(key.lower(), default)


# Error family -> HTTP status; anything else is a 500
_ERROR_STATUS: tuple[tuple[type[CadenceError], int], ...] = (
    (InvalidInputError, 400),
    (SetupError, 400),
    (NotFoundError, 404),
)


@dataclass
class Response:
    """Transport-neutral response."""
    status: int = 200
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @classmethod
    def json(
        cls,
        data: Any,
        status: int = 200,
        headers: Optional[dict[str, str]] = None,
    ) -> Response:
        h = dict(headers or {})
        h["content-type"] = "application/json"
        return cls(status=status, body=json.dumps(data, default=str).encode(), headers=h)

    @classmethod
    def error(cls, message: str, status: int = 400) -> Response:
        return cls.json({"success": False, "error": message}, status=status)

    @classmethod
    def from_error(cls, error: CadenceError) -> Response:
        """Map an engine error to its status code."""
        status = next(
            (code for family, code in _ERROR_STATUS if isinstance(error, family)), 500,
        )
        return cls.json(
            {
                "success": False,
                "error": error.message,
                "code": error.code.name,
                "error_id": error.error_id,
            },
            status=status,
        )

    @classmethod
    def not_found(cls) -> Response:
        return cls.error("Not found", status=404)

    @classmethod
    def method_not_allowed(cls) -> Response:
        return cls.error("Method not allowed", status=405)

    def data(self) -> Any:
        """Decode a JSON body (used by tests and in-process callers)."""
        return json.loads(self.body) if self.body else None


Handler = Callable[[Request], Awaitable[Response]]
Middleware = Callable[[Request, Handler], Awaitable[Response]]


@dataclass
class Route:
    """One (method, path pattern) binding."""
    method: str
    pattern: re.Pattern[str]
    handler: Handler
    param_names: list[str]

    @classmethod
    def create(cls, method: str, path: str, handler: Handler) -> Route:
        param_names: list[str] = []

        def replace_param(match: re.Match[str]) -> str:
            param_names.append(match.group(1))
            return r"(?P<" + match.group(1) + r">[^/]+)"

        pattern_str = "^" + re.sub(r"\{(\w+)\}", replace_param, path) + "$"
        return cls(
            method=method.upper(),
            pattern=re.compile(pattern_str),
            handler=handler,
            param_names=param_names,
        )

    def match(self, method: str, path: str) -> Optional[dict[str, str]]:
        if method.upper() != self.method:
            return None
        match = self.pattern.match(path)
        if not match:
            return None
        return {k: unquote(v) for k, v in match.groupdict().items()}


class CadenceRouter:
    """
    Request router.

    Usage:
        router = CadenceRouter()

        @router.get("/api/sessions/{session_id}")
        async def get_session(request: Request) -> Response:
            ...

        response = await router.dispatch(Request.from_raw("GET", "/api/sessions/abc"))
    """

    __slots__ = ("_routes", "_middleware", "_prefix")

    def __init__(self, prefix: str = "") -> None:
        self._routes: list[Route] = []
        self._middleware: list[Middleware] = []
        self._prefix = prefix

    def route(
        self,
        path: str,
        methods: Sequence[str] = ("GET",),
    ) -> Callable[[Handler], Handler]:
        def decorator(handler: Handler) -> Handler:
            for method in methods:
                self._routes.append(Route.create(method, self._prefix + path, handler))
            return handler
        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, ["GET"])

    def post(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, ["POST"])

    def add(self, method: str, path: str, handler: Handler) -> None:
        """Register a handler without the decorator form."""
        self.route(path, [method])(handler)

    def use(self, middleware: Middleware) -> None:
        self._middleware.append(middleware)

    @property
    def routes(self) -> list[tuple[str, str]]:
        return [(r.method, r.pattern.pattern) for r in self._routes]

    async def dispatch(self, request: Request) -> Response:
        handler: Optional[Handler] = None
        for route in self._routes:
            params = route.match(request.method, request.path)
            if params is not None:
                request.path_params = params
                handler = route.handler
                break

        if handler is None:
            if any(route.pattern.match(request.path) for route in self._routes):
                return Response.method_not_allowed()
            return Response.not_found()

        final_handler = handler
        for mw in reversed(self._middleware):
            final_handler = self._wrap_middleware(mw, final_handler)

        try:
            return await final_handler(request)
        except Exception:
            logger.exception("Unhandled error for %s %s", request.method, request.path)
            return Response.error("Internal server error", status=500)

    @staticmethod
    def _wrap_middleware(middleware: Middleware, handler: Handler) -> Handler:
        async def wrapped(request: Request) -> Response:
            return await middleware(request, handler)
        return wrapped


async def access_log(request: Request, handler: Handler) -> Response:
    """Middleware logging method, path, status and latency."""
    start = time.perf_counter()
    response = await handler(request)
    logger.info(
        "%s %s -> %d (%.1fms)",
        request.method, request.path, response.status,
        (time.perf_counter() - start) * 1000,
    )
    return response
