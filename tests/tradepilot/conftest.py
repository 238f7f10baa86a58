"""Shared fixtures for TradePilot tests."""

import json
from datetime import date, datetime, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Union

import httpx
import openai
import pytest

from tradepilot.ai_client import AIClient
from tradepilot.database import TradePilotDatabase
from tradepilot.models import VehicleSpec

FIXED_TODAY = date(2026, 3, 15)


def completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class FakeCompletions:
    """Stand-in for ``AsyncOpenAI().chat.completions`` replaying scripted replies."""

    def __init__(self, replies: List[Union[str, Dict[str, Any], Exception]]) -> None:
        self.replies = list(replies)
        self.requests: List[Dict[str, Any]] = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if not self.replies:
            raise openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            reply = json.dumps(reply)
        return completion(reply)


class FakeOpenAI:
    def __init__(self, replies) -> None:
        self.chat = SimpleNamespace(completions=FakeCompletions(replies))

    @property
    def requests(self) -> List[Dict[str, Any]]:
        return self.chat.completions.requests


def make_ai_client(*replies) -> AIClient:
    return AIClient(FakeOpenAI(list(replies)), model="test-model")


def api_timeout() -> openai.APITimeoutError:
    return openai.APITimeoutError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))


@pytest.fixture
def camry():
    return VehicleSpec(year=2020, make="Toyota", model="Camry")


@pytest.fixture
def fixed_today():
    return lambda: FIXED_TODAY


@pytest.fixture
def db(tmp_path):
    return TradePilotDatabase(db_path=tmp_path / "tradepilot.db")


class MutableClock:
    """A settable UTC clock for usage gate tests."""

    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


@pytest.fixture
def clock():
    return MutableClock(datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_ai():
    """Factory for an :class:`AIClient` that replays the given replies in order."""
    return make_ai_client


@pytest.fixture
def timeout_error():
    return api_timeout()
