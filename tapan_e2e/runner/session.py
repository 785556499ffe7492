import asyncio
import logging
import re
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from tapan_e2e.api.client import ApiClient, ApiResponse
from tapan_e2e.browser.driver import BrowserDriver
from tapan_e2e.config.config import Settings
from tapan_e2e.errors import InfrastructureError, InvalidStepInput, UnexpectedStatus

logger = logging.getLogger(__name__)

BrowserFactory = Callable[[], Awaitable[BrowserDriver]]

_VAR_RE = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class ResourceRef:
    collection: str
    id: str
    delete_path: str

    def __str__(self) -> str:
        return f"{self.collection}/{self.id}"


class SessionContext:
    """
    Per-run state: auth token, HTTP client, lazily opened browser, captured
    variables and every resource created during the run.

    ``teardown`` releases all of it exactly once. Remote deletions and logout
    share one teardown timeout; the browser and the HTTP client are always
    closed, each with its own timeout. Failures are logged, never raised.
    """

    def __init__(
        self,
        settings: Settings,
        api: Optional[ApiClient] = None,
        browser_factory: Optional[BrowserFactory] = None,
        scenario: str = "",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.scenario = scenario
        self.api = api or ApiClient(settings)
        self._browser_factory = browser_factory
        self._browser: Optional[BrowserDriver] = None
        self.sleep = sleep
        self.cancel: Optional[asyncio.Event] = None
        self.token: Optional[str] = None
        self.vars: Dict[str, Any] = {
            k: v
            for k, v in (
                ("base_url", settings.base_url),
                ("login_email", settings.login_email),
                ("login_password", settings.login_password),
            )
            if v is not None
        }
        self.resources: List[ResourceRef] = []
        self.deleted: List[ResourceRef] = []
        self.last_response: Optional[ApiResponse] = None
        self.teardown_errors: List[str] = []
        self.teardown_calls = 0
        self._torn_down = False

    @classmethod
    @asynccontextmanager
    async def open(cls, settings: Settings, **kwargs):
        session = cls(settings, **kwargs)
        try:
            await session.acquire()
            yield session
        finally:
            await session.teardown()

    async def acquire(self) -> None:
        settings = self.settings
        if settings.api_token:
            self.token = settings.api_token
        elif settings.login_email and settings.login_password:
            logger.info(f"Logging in as {settings.login_email}")
            response = await self.api.request(
                "POST",
                settings.login_path,
                body={"email": settings.login_email, "password": settings.login_password},
                accept=(200, 201),
                authenticated=False,
            )
            body = response.json_or_none() or {}
            token = body.get("access_token") or body.get("token") if isinstance(body, dict) else None
            if not token and isinstance(body, dict) and isinstance(body.get("session"), dict):
                token = body["session"].get("access_token")
            if not isinstance(token, str) or not token.strip():
                raise InfrastructureError(f"Login response from {settings.login_path} has no access token")
            self.token = token
        self.api.set_token(self.token)

    async def browser(self) -> BrowserDriver:
        if self._browser is None:
            if self._browser_factory is None:
                raise InfrastructureError("No browser backend configured for this session")
            self._browser = await self._browser_factory()
        return self._browser

    @property
    def has_browser(self) -> bool:
        return self._browser is not None

    def track(self, collection: str, resource_id: Any, delete_path: Optional[str] = None) -> ResourceRef:
        if resource_id is None or str(resource_id) == "":
            raise InvalidStepInput(f"Cannot track {collection} resource without an id")
        ref = ResourceRef(
            collection=collection,
            id=str(resource_id),
            delete_path=delete_path or f"/api/{collection}/{resource_id}",
        )
        self.resources.append(ref)
        logger.debug(f"Tracking {ref} for cleanup")
        return ref

    def render(self, value: Any) -> Any:
        """Substitute ``{name}`` placeholders from captured variables."""
        if isinstance(value, str):
            whole = _VAR_RE.fullmatch(value)
            if whole:
                return self._var(whole.group(1))
            return _VAR_RE.sub(lambda m: str(self._var(m.group(1))), value)
        if isinstance(value, dict):
            return {k: self.render(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self.render(v) for v in value]
        return value

    def _var(self, name: str) -> Any:
        if name not in self.vars:
            raise InvalidStepInput(f"Variable {{{name}}} has not been captured in this run")
        return self.vars[name]

    async def teardown(self) -> List[str]:
        self.teardown_calls += 1
        if self._torn_down:
            return self.teardown_errors
        self._torn_down = True

        # remote releases share one budget; local handles each get their own
        try:
            deadline = self._deadline()
            for ref in reversed(self.resources):
                await self._release(f"delete {ref}", lambda ref=ref: self._delete(ref), deadline)
            if self.settings.logout_path and self.token:
                await self._release("logout", self._logout, deadline)
        finally:
            if self._browser is not None:
                await self._release("close browser", self._browser.close, self._deadline())
            await self._release("close http client", self.api.close, self._deadline())

        if self.teardown_errors:
            logger.warning(f"Teardown of {self.scenario or 'session'} finished with {len(self.teardown_errors)} error(s)")
        return self.teardown_errors

    def _deadline(self) -> float:
        return time.monotonic() + self.settings.teardown_timeout_ms / 1000.0

    async def _release(self, label: str, call: Callable[[], Awaitable[Any]], deadline: float) -> None:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            message = f"{label}: skipped, teardown timeout of {self.settings.teardown_timeout_ms} ms exhausted"
            logger.warning(message)
            self.teardown_errors.append(message)
            return
        try:
            await asyncio.wait_for(call(), timeout=remaining)
        except asyncio.TimeoutError:
            message = f"{label}: timed out"
            logger.warning(message)
            self.teardown_errors.append(message)
        except Exception as e:
            message = f"{label}: {e}"
            logger.warning(message)
            self.teardown_errors.append(message)

    async def _delete(self, ref: ResourceRef) -> None:
        response = await self.api.request("DELETE", ref.delete_path)
        if response.status == 404:
            logger.debug(f"{ref} already gone")
        elif response.status >= 400:
            raise UnexpectedStatus("DELETE", response.url, response.status, (200, 202, 204, 404), response.text)
        else:
            logger.debug(f"Deleted {ref}")
        self.deleted.append(ref)

    async def _logout(self) -> None:
        await self.api.request("POST", self.settings.logout_path, accept=(200, 204, 302, 401))
