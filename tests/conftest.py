"""Shared fixtures: a controllable clock, in-memory observers and catalogs."""

from __future__ import annotations

import asyncio
import json
import random

import pytest

from tunesync.catalog import Catalog, Track

T0 = 1_700_000_000.0


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: float = T0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeObserver:
    """Observer that records every message it receives."""

    def __init__(
        self,
        observer_id: str,
        *,
        is_open: bool = True,
        fail: bool = False,
        stall: bool = False,
    ) -> None:
        self._id = observer_id
        self.is_open = is_open
        self.fail = fail
        self.stall = stall
        self.messages: list[str] = []
        self.closed = False

    @property
    def observer_id(self) -> str:
        return self._id

    async def send(self, message: str) -> None:
        if self.fail:
            raise ConnectionResetError("connection reset by peer")
        if self.stall:
            await asyncio.sleep(3600)
        self.messages.append(message)

    async def close(self) -> None:
        self.closed = True
        self.is_open = False

    @property
    def states(self) -> list[dict]:
        return [json.loads(message)["data"] for message in self.messages]


def build_catalog(count: int, duration: float = 10.0) -> Catalog:
    return Catalog(
        Track(identifier=f"music/album{i // 10}/track{i}.mp3", duration=duration)
        for i in range(count)
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture
def make_observer():
    return FakeObserver


@pytest.fixture
def make_catalog():
    return build_catalog
