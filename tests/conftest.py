"""Shared fixtures: config, a controllable clock and a scripted login executor."""

import asyncio
from typing import List, Optional

import pytest

from motor_proxy.auth.base_auth import BaseLoginExecutor, SessionCookie
from motor_proxy.auth.session_store import MemorySessionStore
from motor_proxy.run_config import ProxyRunConfig


T0 = 1_700_000_000.0


class FakeClock:
    """Epoch-seconds clock the test moves by hand."""

    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeExecutor(BaseLoginExecutor):
    """Login executor returning canned cookies (or raising), optionally gated."""

    name = "fake"

    def __init__(self, cookies: Optional[List[SessionCookie]] = None,
                 error: Optional[BaseException] = None,
                 gate: Optional[asyncio.Event] = None):
        self.cookies = cookies if cookies is not None else [
            SessionCookie("sid", "abc", "sites.motor.com"),
        ]
        self.error = error
        self.gate = gate
        self.calls = 0

    async def login(self, progress=None) -> List[SessionCookie]:
        self.calls += 1
        if progress is not None:
            progress("login", "Connecting to EBSCO...", 10)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.cookies)


@pytest.fixture
def config():
    return ProxyRunConfig(ebsco_user="user", ebsco_password="secret")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemorySessionStore()
