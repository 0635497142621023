"""
HTTP Collaborators (httpx)

HttpGroupResolver:
    POST <resolver_url>  form: link=<target_ref>
    → JSON body, group key read from the configured id field

HttpActionExecutor:
    prepare()  merges headers / params / body from the action context
               over the configured defaults and renders the URL
               template ({group_key} and {target_ref} placeholders)
    attempt()  sends the prepared request; success iff 2xx

Both own a lazily created httpx.AsyncClient unless one is injected
(tests inject a client over httpx.MockTransport).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

import httpx

from cadence.actions.protocols import AttemptOutcome
from cadence.core import constants as C
from cadence.core.config import HttpConfig

logger = logging.getLogger(__name__)


class _ClientOwner:
    """Lazy httpx.AsyncClient shared by the collaborators below."""

    __slots__ = ("_client", "_owns_client", "_timeout", "_user_agent", "_verify")

    def __init__(
        self,
        client: Optional[httpx.AsyncClient],
        timeout: float,
        user_agent: str,
        verify: bool,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._user_agent = user_agent
        self._verify = verify

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"User-Agent": self._user_agent},
                verify=self._verify,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


# =============================================================================
# GROUP RESOLVER
# =============================================================================
class HttpGroupResolver(_ClientOwner):
    """
    Resolve a target ref through a lookup endpoint.

    Raises:
        httpx.HTTPError: transport failure or non-2xx status
        LookupError: response carries no usable id
    """

    __slots__ = ("_url", "_id_field")

    def __init__(
        self,
        url: str,
        id_field: str = C.DEFAULT_RESOLVER_ID_FIELD,
        timeout: float = C.RESOLVER_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: str = C.DEFAULT_USER_AGENT,
        verify: bool = True,
    ) -> None:
        super().__init__(client, timeout, user_agent, verify)
        self._url = url
        self._id_field = id_field

    @classmethod
    def from_config(
        cls,
        config: HttpConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> HttpGroupResolver:
        if not config.resolver_url:
            raise ValueError("resolver_url is not configured")
        return cls(
            url=config.resolver_url,
            id_field=config.resolver_id_field,
            timeout=config.resolver_timeout_seconds,
            client=client,
            user_agent=config.user_agent,
            verify=config.verify_tls,
        )

    async def resolve(self, target_ref: str) -> str:
        response = await self.client.post(self._url, data={"link": target_ref})
        response.raise_for_status()
        try:
            payload = response.json()
        except ValueError as e:
            raise LookupError("Resolver returned a non-JSON body") from e

        group_key = payload.get(self._id_field) if isinstance(payload, dict) else None
        if group_key in (None, ""):
            raise LookupError(f"Resolver response has no '{self._id_field}' field")
        logger.debug("Resolved %s to group %s", target_ref, group_key)
        return str(group_key)


# =============================================================================
# ACTION EXECUTOR
# =============================================================================
@dataclass(frozen=True)
class PreparedRequest:
    """Fully rendered request replayed on every attempt."""
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    json: Optional[Any] = None
    data: Optional[dict[str, str]] = None


def _string_map(name: str, value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"'{name}' must be a mapping")
    return {str(k): str(v) for k, v in value.items()}


class HttpActionExecutor(_ClientOwner):
    """
    Replays one configured HTTP request per attempt.

    Recognised action_context keys:
        url, method       override the configured endpoint
        headers, params   merged over the defaults
        json | data       request body
        group_key, target_ref
                          URL template fields (added by the scheduler)

    Usage:
        executor = HttpActionExecutor(
            url="https://api.example.com/targets/{group_key}/actions",
        )
        prepared = await executor.prepare({"headers": {"Cookie": "..."}})
        outcome = await executor.attempt(prepared)
    """

    __slots__ = ("_url", "_method", "_headers")

    def __init__(
        self,
        url: Optional[str] = None,
        method: str = C.DEFAULT_ACTION_METHOD,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = C.ACTION_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: str = C.DEFAULT_USER_AGENT,
        verify: bool = True,
    ) -> None:
        super().__init__(client, timeout, user_agent, verify)
        self._url = url
        self._method = method.upper()
        self._headers = dict(headers or {})

    @classmethod
    def from_config(
        cls,
        config: HttpConfig,
        timeout: float = C.ACTION_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> HttpActionExecutor:
        return cls(
            url=config.action_url,
            method=config.action_method,
            timeout=timeout,
            client=client,
            user_agent=config.user_agent,
            verify=config.verify_tls,
        )

    async def prepare(self, action_context: Mapping[str, Any]) -> PreparedRequest:
        """
        Validate the context and render the request.

        Raises:
            ValueError: missing URL, unknown template field, malformed maps
        """
        template = action_context.get("url") or self._url
        if not template:
            raise ValueError("No action URL configured or supplied")

        fields = {
            "group_key": str(action_context.get("group_key", "")),
            "target_ref": str(action_context.get("target_ref", "")),
        }
        try:
            url = str(template).format(**fields)
        except (KeyError, IndexError) as e:
            raise ValueError(f"Unknown placeholder in action URL: {e}") from e

        if "json" in action_context and "data" in action_context:
            raise ValueError("Supply either 'json' or 'data', not both")

        data = action_context.get("data")
        return PreparedRequest(
            method=str(action_context.get("method", self._method)).upper(),
            url=url,
            headers={**self._headers, **_string_map("headers", action_context.get("headers"))},
            params=_string_map("params", action_context.get("params")),
            json=action_context.get("json"),
            data=_string_map("data", data) if data is not None else None,
        )

    async def attempt(self, prepared: PreparedRequest) -> AttemptOutcome:
        try:
            response = await self.client.request(
                prepared.method,
                prepared.url,
                headers=prepared.headers,
                params=prepared.params,
                json=prepared.json,
                data=prepared.data,
            )
        except httpx.HTTPError as e:
            return AttemptOutcome.failed(f"{type(e).__name__}: {e}")

        if response.is_success:
            return AttemptOutcome.ok(f"HTTP {response.status_code}")
        return AttemptOutcome.failed(f"HTTP {response.status_code}")
