"""Application configuration loader."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]


CONFIG_ENV_VAR = "APP_CONFIG_FILE"
CONFIG_PATH = Path(__file__).resolve().parents[1] / "config.toml"

WAIT_UNTIL_OPTIONS = {"load", "domcontentloaded", "networkidle", "commit"}
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)


class Config:
    """Application configuration loaded from TOML files.

    The initializer normalizes nested dictionaries and allows environment
    variables to override credentials, API keys and connection strings.
    """

    def __init__(self, data: Dict[str, Any]) -> None:
        """Initialise configuration values from parsed TOML data.

        Args:
            data: Nested dictionary representation of the TOML file.
        """
        site = data.get("site", {})
        credentials = data.get("credentials", {})
        openai = data.get("openai", {})
        llm = data.get("llm", {})
        playwright_settings = data.get("playwright", {})
        scraper = data.get("scraper", {})
        size_probe = data.get("size_probe", {})
        database = data.get("database", {})
        progress = data.get("progress", {})
        logging_settings = data.get("logging", {})

        self.SITE_BASE_URL: str = os.getenv("SITE_BASE_URL", site.get("base_url", "https://f95zone.to")).rstrip("/")
        self.SITE_DOMAIN: str = os.getenv("SITE_DOMAIN", site.get("domain", "f95zone.to")).lower()
        self.SITE_LOGIN_PATH: str = site.get("login_path", "/login/")

        self.F95ZONE_USERNAME: str = os.getenv("F95ZONE_USERNAME", credentials.get("username", ""))
        self.F95ZONE_PASSWORD: str = os.getenv("F95ZONE_PASSWORD", credentials.get("password", ""))

        self.OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", openai.get("base_url", ""))
        self.OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", openai.get("api_key", ""))
        self.EXTRACTION_MODEL: str = os.getenv("EXTRACTION_MODEL", openai.get("model", "gpt-4o-mini"))

        self.LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", llm.get("temperature", 0.1)))
        self.LLM_MAX_TOKENS: Optional[int] = self._parse_optional_int(
            os.getenv("LLM_MAX_TOKENS", self._none_to_empty(llm.get("max_tokens", 2000)))
        )
        self.LLM_TIMEOUT_SECONDS: float = float(os.getenv("LLM_TIMEOUT_SECONDS", llm.get("timeout_seconds", 60)))
        self.LLM_MAX_CONTENT_CHARS: int = int(llm.get("max_content_chars", 8000))
        self.LLM_MAX_IMAGES: int = int(llm.get("max_images", 10))
        self.LLM_MAX_LINKS: int = int(llm.get("max_links", 20))
        self.MAX_DESCRIPTION_CHARS: int = int(llm.get("max_description_chars", 500))

        self.PLAYWRIGHT_HEADLESS: bool = self._parse_bool(
            os.getenv("PLAYWRIGHT_HEADLESS", playwright_settings.get("headless", True))
        )
        self.PLAYWRIGHT_BROWSERS_PATH: str = playwright_settings.get("browsers_path", "/ms-playwright")
        self.PLAYWRIGHT_DEFAULT_TIMEOUT_MS: int = int(playwright_settings.get("default_timeout_ms", 15000))
        self.PLAYWRIGHT_NAVIGATION_TIMEOUT_MS: int = int(playwright_settings.get("navigation_timeout_ms", 30000))
        self.PLAYWRIGHT_READY_TIMEOUT_MS: int = int(playwright_settings.get("ready_timeout_ms", 10000))
        wait_until_candidate = str(playwright_settings.get("default_wait_until", "domcontentloaded")).strip().lower()
        if wait_until_candidate not in WAIT_UNTIL_OPTIONS:
            wait_until_candidate = "domcontentloaded"
        self.PLAYWRIGHT_DEFAULT_WAIT_UNTIL: str = wait_until_candidate
        self.PLAYWRIGHT_USER_AGENT: str = playwright_settings.get("user_agent") or DEFAULT_USER_AGENT
        self.LOGIN_FORM_SELECTOR: str = playwright_settings.get("login_form_selector", "input[name='login']")
        self.ERROR_PANEL_SELECTOR: str = playwright_settings.get(
            "error_panel_selector", ".errorPanel, .blockMessage--error"
        )
        self.MEMBER_NAV_SELECTOR: str = playwright_settings.get(
            "member_nav_selector", "div.p-account.p-navgroup--member"
        )

        self.SCRAPE_MAX_ATTEMPTS: int = max(1, int(os.getenv("SCRAPE_MAX_ATTEMPTS", scraper.get("max_attempts", 2))))
        self.SCRAPE_RETRY_BACKOFF_SECONDS: float = float(scraper.get("retry_backoff_seconds", 2.0))
        self.SCRAPE_CONTEXT_CHARS: int = int(scraper.get("context_chars", 200))
        self.SCRAPE_MAX_LINKS: int = int(scraper.get("max_links", 500))

        self.SIZE_HEAD_TIMEOUT_SECONDS: float = float(size_probe.get("head_timeout_seconds", 10))
        self.SIZE_RANGE_TIMEOUT_SECONDS: float = float(size_probe.get("range_timeout_seconds", 5))
        self.SIZE_MAX_CONCURRENCY: int = max(1, int(size_probe.get("max_concurrency", 4)))
        self.SIZE_MAX_REDIRECTS: int = int(size_probe.get("max_redirects", 5))
        self.SIZE_USER_AGENT: str = size_probe.get("user_agent") or DEFAULT_USER_AGENT

        self.DATABASE_URL: str = os.getenv("DATABASE_URL", database.get("url", "sqlite:///./data/games.db"))

        self.PROGRESS_IDLE_TIMEOUT_SECONDS: float = float(progress.get("idle_timeout_seconds", 600))

        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", logging_settings.get("level", "INFO")).upper()
        self.LOG_FILE_PATH: str = os.getenv("LOG_FILE_PATH", logging_settings.get("file", "logs/app.log"))
        self.LOG_MAX_BYTES: int = int(logging_settings.get("max_bytes", 5 * 1024 * 1024))
        self.LOG_BACKUP_COUNT: int = int(logging_settings.get("backup_count", 5))

    @property
    def login_url(self) -> str:
        """Return the absolute URL of the site's login page."""
        return f"{self.SITE_BASE_URL}{self.SITE_LOGIN_PATH}"

    @staticmethod
    def _none_to_empty(value: Any) -> str:
        """Convert `None` to an empty string.

        Args:
            value: The original value that may be `None`.

        Returns:
            str: An empty string when `value` is `None`; otherwise the string
            representation of `value`.
        """
        if value is None:
            return ""
        return str(value)

    @staticmethod
    def _parse_optional_int(value: str | None) -> Optional[int]:
        """Parse an optional integer value from a string.

        Args:
            value: String representation of an integer or a sentinel that
                indicates absence (for example `"None"`).

        Returns:
            Optional[int]: The parsed integer, or `None` when `value` is falsy
            or one of the sentinel strings.

        Raises:
            ValueError: If `value` is not a valid integer representation.
        """
        if value in (None, "", "None", "none", "null", "Null"):
            return None
        return int(value)

    @staticmethod
    def _parse_bool(value: Any) -> bool:
        """Parse a boolean-like value.

        Args:
            value: Any truthy/falsy representation.

        Returns:
            bool: Parsed boolean, defaulting to False only for explicit false-like values.
        """
        if isinstance(value, bool):
            return value
        if value is None:
            return False
        str_value = str(value).strip().lower()
        return str_value not in {"0", "false", "no", "off"}


def load_config(path: Path | str | None = None) -> Config:
    """Load the application configuration from a TOML file.

    Args:
        path: Optional path to the configuration file. When omitted, the
            function checks the `APP_CONFIG_FILE` environment variable and
            finally falls back to `config.toml`.

    Returns:
        Config: A configuration object populated with the parsed values.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        tomllib.TOMLDecodeError: If the TOML content is malformed.
    """
    config_path = _resolve_config_path(path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found at {config_path}")

    with config_path.open("rb") as f:
        data = tomllib.load(f)

    return Config(data)


def _resolve_config_path(path: Path | str | None) -> Path:
    """Resolve the path to the configuration file.

    Args:
        path: Explicit path provided by the caller.

    Returns:
        Path: The resolved configuration path, prioritizing the argument, then
        the `APP_CONFIG_FILE` environment variable, and lastly the default
        location.
    """
    if path:
        return Path(path)

    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path)

    return CONFIG_PATH


config = load_config()
