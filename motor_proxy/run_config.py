"""
Unified Run Configuration
=========================
Single source of truth for ALL proxy defaults and runtime settings.

Every module (CLI, auth manager, login executors, gateway) reads from
this object.  Environment variables and CLI flags populate it once at
process start; nothing re-reads the environment afterwards.

Missing credentials are a hard error: ``validate()`` raises
``ConfigurationError`` so the process never serves silently-broken
responses.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Mapping, Optional
from urllib.parse import urlencode, urlparse

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Defaults for every setting; from_env() and the dataclass both read these
# ---------------------------------------------------------------------------
_DEFAULTS = {
    "ebsco_profile": "autorepso",
    "ebsco_group_id": "remote",
    "motor_api_base": "https://sites.motor.com/m1",
    "proxy_host": "0.0.0.0",
    "proxy_port": 3001,
    "max_session_age_seconds": 24 * 60 * 60,
    "max_redirects": 10,
    "login_strategy": "redirect",       # "redirect" (HTTP chain) | "browser" (Playwright)
    "headless": True,
    "session_state_dir": ".session_state",
    "expiry_response": "passthrough",   # "passthrough" | "substitute"
    "request_timeout_seconds": 30.0,
    "log_level": "INFO",
    "user_agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    # URLs from the authentication flow
    "ebsco_login_url": "https://search.ebscohost.com/login.aspx",
    "library_portal_url": (
        "https://e-resources.powerlibrary.org/ext/econtent/BarcodeEntry/index.php"
        "?lid=PL7321R&dataid=2145&libname=E-Card+or+public+library"
    ),
    "vendor_base_url": "https://sites.motor.com",
    "vendor_domain": "motor.com",
}

_LOGIN_STRATEGIES = ("redirect", "browser")
_EXPIRY_RESPONSES = ("passthrough", "substitute")


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass
class ProxyRunConfig:
    """
    Unified configuration consumed by every proxy subsystem.

    Populate via:
      - ``ProxyRunConfig(ebsco_user=..., ebsco_password=...)`` → explicit
      - ``ProxyRunConfig.from_env()``                        → environment
    """

    # ---- Credentials ----
    library_barcode: str = ""
    ebsco_user: str = ""
    ebsco_password: str = ""
    ebsco_profile: str = _DEFAULTS["ebsco_profile"]
    ebsco_group_id: str = _DEFAULTS["ebsco_group_id"]

    # ---- Upstream ----
    motor_api_base: str = _DEFAULTS["motor_api_base"]
    vendor_base_url: str = _DEFAULTS["vendor_base_url"]
    vendor_domain: str = _DEFAULTS["vendor_domain"]
    ebsco_login_url: str = _DEFAULTS["ebsco_login_url"]
    library_portal_url: str = _DEFAULTS["library_portal_url"]
    request_timeout_seconds: float = _DEFAULTS["request_timeout_seconds"]

    # ---- Listener ----
    proxy_host: str = _DEFAULTS["proxy_host"]
    proxy_port: int = _DEFAULTS["proxy_port"]

    # ---- Session management ----
    max_session_age_seconds: float = _DEFAULTS["max_session_age_seconds"]
    max_redirects: int = _DEFAULTS["max_redirects"]
    login_strategy: str = _DEFAULTS["login_strategy"]
    headless: bool = _DEFAULTS["headless"]
    session_state_dir: str = _DEFAULTS["session_state_dir"]
    expiry_response: str = _DEFAULTS["expiry_response"]

    # ---- Identity ----
    user_agent: str = _DEFAULTS["user_agent"]

    # ---- Logging ----
    log_level: str = _DEFAULTS["log_level"]
    log_dir: Optional[str] = None

    # -----------------------------------------------------------------------
    # Factory helpers
    # -----------------------------------------------------------------------
    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ProxyRunConfig":
        """Build config from environment variables (``.env`` already loaded)."""
        if env is None:
            env = os.environ

        def text(key: str, default: str = "") -> str:
            return env.get(key, "").strip() or default

        try:
            port = int(text("PROXY_PORT", str(_DEFAULTS["proxy_port"])))
            max_age = float(text(
                "MAX_SESSION_AGE_SECONDS", str(_DEFAULTS["max_session_age_seconds"])
            ))
            timeout = float(text(
                "REQUEST_TIMEOUT_SECONDS", str(_DEFAULTS["request_timeout_seconds"])
            ))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid numeric setting: {exc}") from exc

        headless = _DEFAULTS["headless"]
        if text("NODE_ENV") == "development":
            headless = False
        headless = _env_bool(env, "HEADLESS", headless)

        return cls(
            library_barcode=text("LIBRARY_BARCODE"),
            ebsco_user=text("EBSCO_USER"),
            ebsco_password=text("EBSCO_PASSWORD"),
            ebsco_profile=text("EBSCO_PROFILE", _DEFAULTS["ebsco_profile"]),
            ebsco_group_id=text("EBSCO_GROUP_ID", _DEFAULTS["ebsco_group_id"]),
            motor_api_base=text("MOTOR_API_BASE", _DEFAULTS["motor_api_base"]),
            request_timeout_seconds=timeout,
            proxy_host=text("PROXY_HOST", _DEFAULTS["proxy_host"]),
            proxy_port=port,
            max_session_age_seconds=max_age,
            login_strategy=text("LOGIN_STRATEGY", _DEFAULTS["login_strategy"]).lower(),
            headless=headless,
            session_state_dir=text("SESSION_STATE_DIR", _DEFAULTS["session_state_dir"]),
            expiry_response=text("EXPIRY_RESPONSE", _DEFAULTS["expiry_response"]).lower(),
            log_level=text("LOG_LEVEL", _DEFAULTS["log_level"]).upper(),
            log_dir=text("LOG_DIR") or None,
        )

    # -----------------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------------
    def missing_settings(self) -> List[str]:
        """Names of required settings that are empty."""
        required = ["ebsco_user", "ebsco_password"]
        if self.login_strategy == "browser":
            required.insert(0, "library_barcode")
        return [key for key in required if not str(getattr(self, key) or "").strip()]

    def validate(self) -> None:
        """Raise ``ConfigurationError`` if the proxy cannot serve traffic."""
        missing = self.missing_settings()
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}. "
                f"Please set these as environment variables: "
                f"{', '.join(k.upper() for k in missing)}"
            )
        if self.login_strategy not in _LOGIN_STRATEGIES:
            raise ConfigurationError(
                f"Unknown login strategy '{self.login_strategy}' "
                f"(expected one of: {', '.join(_LOGIN_STRATEGIES)})"
            )
        if self.expiry_response not in _EXPIRY_RESPONSES:
            raise ConfigurationError(
                f"Unknown expiry response '{self.expiry_response}' "
                f"(expected one of: {', '.join(_EXPIRY_RESPONSES)})"
            )
        if not urlparse(self.motor_api_base).netloc:
            raise ConfigurationError(f"Invalid MOTOR_API_BASE: {self.motor_api_base!r}")
        if self.max_redirects < 1:
            raise ConfigurationError("max_redirects must be at least 1")

    # -----------------------------------------------------------------------
    # Derived values
    # -----------------------------------------------------------------------
    @property
    def login_url(self) -> str:
        """EBSCO login URL carrying the account credentials."""
        query = urlencode({
            "authtype": "uid",
            "user": self.ebsco_user,
            "password": self.ebsco_password,
            "profile": self.ebsco_profile,
            "groupid": self.ebsco_group_id,
        })
        return f"{self.ebsco_login_url}?{query}"

    @property
    def vendor_entry_url(self) -> str:
        """Canonical vendor entry path hit once the chain reaches the vendor."""
        return f"{self.vendor_base_url.rstrip('/')}/m1"

    @property
    def vendor_referer(self) -> str:
        return f"{self.vendor_base_url.rstrip('/')}/m1/"

    # -----------------------------------------------------------------------
    # Logging helper
    # -----------------------------------------------------------------------
    def log_summary(self) -> None:
        """Emit a structured summary to the logger (never credentials)."""
        logger.info("=" * 60)
        logger.info("MOTOR PROXY RUN CONFIG")
        logger.info("=" * 60)
        logger.info(f"  Target API:       {self.motor_api_base}")
        logger.info(f"  Listen:           {self.proxy_host}:{self.proxy_port}")
        logger.info(f"  Login Strategy:   {self.login_strategy}")
        logger.info(f"  Headless:         {self.headless}")
        logger.info(f"  Max Session Age:  {self.max_session_age_seconds / 3600:.1f}h")
        logger.info(f"  Session State:    {self.session_state_dir}")
        logger.info(f"  Expiry Response:  {self.expiry_response}")
        logger.info("=" * 60)
