"""Tests for fat/models.py dataclasses."""

import pytest

from fat.models import Agent, Rate, Reply, RoundResult
from tests.conftest import MockProvider


def test_agent_id_and_name():
    agent = Agent(family_id="grok", variant_id="grok-4-fast", capability=MockProvider("grok"))
    assert agent.id == "grok"
    assert agent.name == "grok-4-fast"
    assert agent.request_timeout_sec is None


def test_rate_cost():
    assert Rate(0.8, 4.0).cost(1_000_000, 250_000) == pytest.approx(1.8)
    assert Rate().cost(10_000, 10_000) == 0.0


def test_round_result_ok():
    assert RoundResult("a", 1, Reply(answer="x")).ok
    assert not RoundResult("a", 1, None, error="timed out after 1s").ok


def test_reply_is_frozen():
    reply = Reply(answer="x")
    with pytest.raises(AttributeError):
        reply.answer = "y"  # type: ignore[misc]
