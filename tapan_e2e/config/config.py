import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional

from dotenv import load_dotenv


class ConfigError(Exception):
    pass


def _int(env: Mapping[str, str], key: str, default: int, minimum: int = 1) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigError(f"{key} must be >= {minimum}, got {value}")
    return value


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{key} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    base_url: str = "http://localhost:3000"
    api_token: Optional[str] = None
    login_email: Optional[str] = None
    login_password: Optional[str] = None
    login_path: str = "/api/auth/login"
    logout_path: Optional[str] = None
    browser: str = "playwright"
    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 980
    step_timeout_ms: int = 30_000
    run_timeout_ms: int = 600_000
    teardown_timeout_ms: int = 15_000
    http_max_retries: int = 3
    http_retry_base_ms: int = 1_000
    locator_store: str = "./storage/locators.json"
    testcase_dir: str = "./testcase"
    model_api_key: Optional[str] = None
    model_name: str = "google/gemini-2.5-flash"

    def url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from the process environment (after reading ``.env``)."""
    if env is None:
        load_dotenv()
        env = os.environ

    browser = env.get("TAPAN_BROWSER", "playwright").strip().lower()
    if browser not in ("playwright", "stagehand"):
        raise ConfigError(f"TAPAN_BROWSER must be 'playwright' or 'stagehand', got {browser!r}")

    return Settings(
        base_url=env.get("TAPAN_BASE_URL", Settings.base_url),
        api_token=env.get("TAPAN_API_TOKEN") or None,
        login_email=env.get("TAPAN_LOGIN_EMAIL") or None,
        login_password=env.get("TAPAN_LOGIN_PASSWORD") or None,
        login_path=env.get("TAPAN_LOGIN_PATH", Settings.login_path),
        logout_path=env.get("TAPAN_LOGOUT_PATH") or None,
        browser=browser,
        headless=_bool(env, "TAPAN_HEADLESS", True),
        step_timeout_ms=_int(env, "TAPAN_STEP_TIMEOUT_MS", Settings.step_timeout_ms),
        run_timeout_ms=_int(env, "TAPAN_RUN_TIMEOUT_MS", Settings.run_timeout_ms),
        teardown_timeout_ms=_int(env, "TAPAN_TEARDOWN_TIMEOUT_MS", Settings.teardown_timeout_ms),
        http_max_retries=_int(env, "TAPAN_HTTP_MAX_RETRIES", Settings.http_max_retries, minimum=0),
        http_retry_base_ms=_int(env, "TAPAN_HTTP_RETRY_BASE_MS", Settings.http_retry_base_ms),
        locator_store=env.get("TAPAN_LOCATOR_STORE", Settings.locator_store),
        testcase_dir=env.get("TAPAN_TESTCASE_DIR", Settings.testcase_dir),
        model_api_key=env.get("GEMINI_API_KEY") or None,
        model_name=env.get("TAPAN_MODEL_NAME", Settings.model_name),
    )
