"""
Login Executor Factory
======================
Maps the configured ``login_strategy`` to a login executor.

The auth manager never imports executor modules directly; the browser
executor is imported lazily so Playwright is only loaded when used.

Usage::

    from motor_proxy.auth.auth_factory import create_login_executor

    executor = create_login_executor(config)
"""

from __future__ import annotations

import logging
from typing import List

from ..errors import ConfigurationError
from .base_auth import BaseLoginExecutor, Credentials

logger = logging.getLogger(__name__)


def available_strategies() -> List[str]:
    """Names accepted by ``create_login_executor``."""
    return ["redirect", "browser"]


def create_login_executor(config) -> BaseLoginExecutor:
    """Build the executor for ``config.login_strategy``.

    Raises:
        ConfigurationError: unknown strategy.
    """
    strategy = config.login_strategy.lower()
    if strategy == "redirect":
        from .redirect_login import RedirectLoginClient
        logger.info("[AUTH-FACTORY] Using redirect-chain login strategy")
        return RedirectLoginClient(config)
    if strategy == "browser":
        from .browser_login import BrowserLoginExecutor
        logger.info("[AUTH-FACTORY] Using browser login strategy")
        return BrowserLoginExecutor(config, Credentials.from_config(config))
    raise ConfigurationError(
        f"Unknown login strategy '{config.login_strategy}' "
        f"(expected one of: {', '.join(available_strategies())})"
    )
