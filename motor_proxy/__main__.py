#!/usr/bin/env python3
"""
Motor API Authentication Proxy — CLI
====================================
Loads ``.env``, validates configuration, then either serves the proxy
with uvicorn or runs one login handshake and reports the result.

Run with: python -m motor_proxy [--port 3001] [--authenticate-only]
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import AuthError, ConfigurationError
from .run_config import ProxyRunConfig

logger = logging.getLogger("motor_proxy")

_LOG_FORMAT = '%(asctime)s | %(levelname)s | %(message)s'


def _load_env(env_file: Optional[str]) -> None:
    """Load credentials/config from a .env file before reading settings."""
    if env_file:
        load_dotenv(env_file)
        return
    env_path = Path(__file__).resolve().parent.parent / '.env'
    if env_path.exists():
        load_dotenv(env_path)
    else:
        load_dotenv()  # tries CWD


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """Console logging, plus error/combined log files when *log_dir* is set."""
    logging.basicConfig(level=level, format=_LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
    if not log_dir:
        return
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(_LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
    root = logging.getLogger()
    for filename, file_level in (("proxy-error.log", logging.ERROR),
                                 ("proxy-combined.log", logging.NOTSET)):
        handler = logging.FileHandler(directory / filename, encoding="utf-8")
        handler.setLevel(file_level)
        handler.setFormatter(formatter)
        root.addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="motor_proxy",
        description="Cookie-injecting reverse proxy for the Motor API",
    )
    parser.add_argument("--host", help="Listen address (default: PROXY_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="Listen port (default: PROXY_PORT or 3001)")
    parser.add_argument("--login-strategy", choices=["redirect", "browser"],
                        help="Login executor (default: LOGIN_STRATEGY or redirect)")
    parser.add_argument("--log-level", help="Logging level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--env-file", help="Path to a .env file")
    parser.add_argument("--authenticate-only", action="store_true",
                        help="Run one login handshake, save the session and exit")
    return parser


def _apply_overrides(config: ProxyRunConfig, args: argparse.Namespace) -> ProxyRunConfig:
    if args.host:
        config.proxy_host = args.host
    if args.port:
        config.proxy_port = args.port
    if args.login_strategy:
        config.login_strategy = args.login_strategy
    if args.log_level:
        config.log_level = args.log_level.upper()
    return config


async def _authenticate_once(config: ProxyRunConfig) -> int:
    from .app import build_auth_manager

    manager = build_auth_manager(config)
    try:
        await manager.authenticate()
    except AuthError as exc:
        logger.error(f"Authentication failed: {exc}")
        return 1
    names = ", ".join(c.name for c in manager.session.cookies)
    print(f"\n  ✅ Authenticated: {len(manager.session.cookies)} cookies ({names})\n")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    _load_env(args.env_file)

    try:
        config = _apply_overrides(ProxyRunConfig.from_env(), args)
        configure_logging(config.log_level, config.log_dir)
        config.validate()
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.ERROR, format=_LOG_FORMAT)
        logger.error(f"[CONFIG] {exc}")
        return 1

    logger.info("Motor API Authentication Proxy starting...")
    config.log_summary()

    if args.authenticate_only:
        return asyncio.run(_authenticate_once(config))

    import uvicorn
    from .app import create_app

    app = create_app(config)
    logger.info(f"  Health check: http://localhost:{config.proxy_port}/health")
    logger.info(f"  API proxy:    http://localhost:{config.proxy_port}/api/*")
    uvicorn.run(app, host=config.proxy_host, port=config.proxy_port,
                log_level=config.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
