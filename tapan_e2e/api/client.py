import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import httpx

from tapan_e2e.config.config import Settings
from tapan_e2e.errors import InvalidStepInput, NetworkError, StepTimeout, UnexpectedStatus

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 90.0


@dataclass
class ApiResponse:
    method: str
    url: str
    status: int
    headers: Dict[str, str]
    content: bytes
    elapsed_ms: float
    _parsed: Any = field(default=None, repr=False)

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        if self._parsed is None:
            self._parsed = json.loads(self.text) if self.content.strip() else None
        return self._parsed

    def json_or_none(self) -> Any:
        try:
            return self.json()
        except ValueError:
            return None

    @property
    def is_json(self) -> bool:
        return self.headers.get("content-type", "").startswith("application/json")


class ApiClient:
    """Thin async HTTP client for the system under test.

    Retries HTTP 429 with exponential backoff (or the server's ``Retry-After``)
    unless ``retry_rate_limit`` is off, and turns transport failures into the
    harness error types.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self._sleep = sleep
        self._token: Optional[str] = None
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            transport=transport,
            headers={"Accept": "application/json"},
            follow_redirects=True,
        )

    @property
    def token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        timeout_ms: Optional[int] = None,
        accept: Optional[Iterable[int]] = None,
        authenticated: bool = True,
        retry_rate_limit: bool = True,
    ) -> ApiResponse:
        if not method or not method.strip():
            raise InvalidStepInput("HTTP method must not be empty")
        if not url or not url.strip():
            raise InvalidStepInput("URL must not be empty")
        timeout_ms = self.settings.step_timeout_ms if timeout_ms is None else timeout_ms
        if timeout_ms <= 0:
            raise InvalidStepInput(f"timeout must be positive, got {timeout_ms} ms")

        method = method.upper()
        attempt = 0
        while True:
            request = self._build(method, url, headers, body, timeout_ms, authenticated)
            started = time.monotonic()
            try:
                response = await self._client.send(request)
            except httpx.TimeoutException:
                raise StepTimeout(f"{method} {request.url}", timeout_ms)
            except httpx.TransportError as e:
                raise NetworkError(str(request.url), f"{type(e).__name__}: {e}")

            elapsed_ms = (time.monotonic() - started) * 1000.0
            if response.status_code == 429 and retry_rate_limit and attempt < self.settings.http_max_retries:
                delay = self._backoff(response, attempt)
                logger.warning(
                    f"⏳ {method} {request.url} rate limited, retrying in {delay:.1f}s "
                    f"(attempt {attempt + 1}/{self.settings.http_max_retries})"
                )
                await response.aclose()
                await self._sleep(delay)
                attempt += 1
                continue

            result = ApiResponse(
                method=method,
                url=str(request.url),
                status=response.status_code,
                headers={k.lower(): v for k, v in response.headers.items()},
                content=response.content,
                elapsed_ms=elapsed_ms,
            )
            logger.debug(f"{method} {result.url} -> {result.status} ({elapsed_ms:.0f} ms)")
            if accept is not None:
                accepted = tuple(accept)
                if result.status not in accepted:
                    raise UnexpectedStatus(method, result.url, result.status, accepted, result.text)
            return result

    def _build(self, method, url, headers, body, timeout_ms, authenticated) -> httpx.Request:
        merged = dict(headers or {})
        if authenticated and self._token and "Authorization" not in merged:
            merged["Authorization"] = f"Bearer {self._token}"

        kwargs: Dict[str, Any] = {"headers": merged, "timeout": timeout_ms / 1000.0}
        if isinstance(body, (bytes, str)):
            kwargs["content"] = body
        elif body is not None:
            kwargs["json"] = body

        request = self._client.build_request(method, url, **kwargs)
        if not authenticated:
            request.headers.pop("Authorization", None)
            request.headers.pop("Cookie", None)
        return request

    def _backoff(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return min(max(float(retry_after), 0.0), MAX_BACKOFF_SECONDS)
            except ValueError:
                logger.debug(f"Ignoring non-numeric Retry-After: {retry_after!r}")
        backoff = max(0.1, self.settings.http_retry_base_ms / 1000.0) * (2 ** attempt)
        jitter = random.uniform(0.0, min(1.0, backoff * 0.25))
        return min(backoff + jitter, MAX_BACKOFF_SECONDS)

    async def close(self) -> None:
        await self._client.aclose()
