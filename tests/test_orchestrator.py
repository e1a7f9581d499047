"""Tests for fat/orchestrator.py: the full request lifecycle with mock agents."""

import asyncio
import random
from unittest.mock import MagicMock

import pytest

from fat.orchestrator import Orchestrator
from fat.ranking import AnonymizationMap, RankingEngine
from fat.rounds import RoundExecutor
from fat.transcripts import CANCELLED_MARKER
from tests.conftest import MockProvider, make_agent

SEED = 11


def _orchestrator(broadcaster, fast_retry, **kwargs) -> Orchestrator:
    return Orchestrator(
        broadcaster,
        executor=RoundExecutor(fast_retry, broadcaster=broadcaster),
        ranking=RankingEngine(rng=random.Random(SEED)),
        **kwargs,
    )


def _panel(ids: list[str], order: list[str]) -> list[MockProvider]:
    labels = AnonymizationMap.create(ids, random.Random(SEED))
    ballot = "\n".join(labels.label_for(a) for a in order)
    return [MockProvider(a, ranking=ballot) for a in ids]


async def test_event_sequence(broadcaster, fast_retry):
    agents = [make_agent(p) for p in _panel(["grok", "gpt"], ["gpt", "grok"])]
    await _orchestrator(broadcaster, fast_retry).process_question("Q?", 2, agents)

    assert broadcaster.types == [
        "clear",
        "round_start", "response", "response",
        "round_start", "response", "response",
        "ranking_start",
        "winner",
    ]
    assert [(e["round"], e["total"]) for e in broadcaster.of_type("round_start")] == [(1, 2), (2, 2)]
    assert len({e["request_id"] for e in broadcaster.messages}) == 1


async def test_calls_per_request(broadcaster, fast_retry):
    ids = ["grok", "gpt", "claude"]
    providers = _panel(ids, ids)
    agents = [make_agent(p) for p in providers]

    await _orchestrator(broadcaster, fast_retry).process_question("Q?", 3, agents)

    # N agents x R rounds, plus one ranking call each
    assert sum(len(p.prompts) for p in providers) == 9
    assert sum(len(p.ranking_prompts) for p in providers) == 3


async def test_winner_event_and_result(broadcaster, fast_retry):
    ids = ["grok", "gpt", "claude"]
    agents = [make_agent(p) for p in _panel(ids, ["claude", "grok", "gpt"])]

    run = await _orchestrator(broadcaster, fast_retry).process_question("Q?", 1, agents, question_ts=42)

    winner = broadcaster.of_type("winner")[0]
    assert winner["gold"] == ["claude"]
    assert winner["silver"] == ["grok"]
    assert winner["bronze"] == ["gpt"]
    assert winner["answer"] == "Answer from claude (round 1)"
    assert winner["metrics"]["winners"] == ["claude"]
    assert run.outcome.gold == ["claude"]
    assert run.question_ts == 42
    assert len(run.rounds) == 1
    assert set(run.replies) == set(ids)


async def test_failed_agent_still_ranked_and_winner_emitted(broadcaster, fast_retry):
    providers = _panel(["grok", "gpt"], ["grok", "gpt"])
    providers[1].always_fail = True
    agents = [make_agent(p) for p in providers]

    run = await _orchestrator(broadcaster, fast_retry).process_question("Q?", 1, agents)

    assert broadcaster.of_type("error")[0]["model"] == "gpt"
    assert run.outcome.gold == ["grok"]
    assert broadcaster.types[-1] == "winner"


async def test_fallback_winner_when_no_ballots(broadcaster, fast_retry):
    agents = [make_agent(MockProvider(a, ranking="I refuse.")) for a in ("a", "b", "c")]
    run = await _orchestrator(broadcaster, fast_retry).process_question("Q?", 1, agents)

    assert run.outcome.fallback
    assert broadcaster.of_type("winner")[0]["gold"] == ["a"]


async def test_cancellation_writes_marker_and_skips_ranking(broadcaster, fast_retry, tmp_path):
    providers = [MockProvider("grok", delay=5), MockProvider("gpt", delay=5)]
    agents = [make_agent(p) for p in providers]
    orch = _orchestrator(broadcaster, fast_retry, answers_dir=tmp_path)

    task = asyncio.create_task(orch.process_question("Q?", 3, agents, question_ts=123))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert (tmp_path / "123" / CANCELLED_MARKER).exists()
    assert "ranking_start" not in broadcaster.types
    assert "winner" not in broadcaster.types
    assert all(not p.ranking_prompts for p in providers)


class _SlowRanking(RankingEngine):
    async def rank(self, *args, **kwargs):
        await asyncio.sleep(5)
        return await super().rank(*args, **kwargs)


async def test_cancel_during_ranking_still_announces_winner(broadcaster, fast_retry, tmp_path):
    store = MagicMock()
    agents = [make_agent(MockProvider("grok")), make_agent(MockProvider("gpt"))]
    orch = Orchestrator(
        broadcaster,
        executor=RoundExecutor(fast_retry, broadcaster=broadcaster),
        ranking=_SlowRanking(),
        store=store,
        answers_dir=tmp_path,
    )

    task = asyncio.create_task(orch.process_question("Q?", 1, agents, question_ts=456))
    while "ranking_start" not in broadcaster.types:
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert broadcaster.types[-2:] == ["ranking_start", "winner"]
    winner = broadcaster.of_type("winner")[0]
    assert winner["gold"] == ["grok"]
    assert winner["answer"] == "Answer from grok (round 1)"
    assert winner["scores"] == {"grok": 0, "gpt": 0}
    assert (tmp_path / "456" / CANCELLED_MARKER).exists()
    store.save_run.assert_not_called()


async def test_sink_failures_do_not_change_result(broadcaster, fast_retry, caplog):
    store = MagicMock()
    store.save_run.side_effect = RuntimeError("disk full")
    exporter = MagicMock()
    exporter.export.side_effect = OSError("read-only")
    agents = [make_agent(p) for p in _panel(["grok", "gpt"], ["gpt", "grok"])]

    run = await _orchestrator(broadcaster, fast_retry, store=store, exporter=exporter).process_question(
        "Q?", 1, agents,
    )

    assert run.outcome.gold == ["gpt"]
    store.save_run.assert_called_once_with(run)
    exporter.export.assert_called_once_with(run)
    assert "Failed to persist run" in caplog.text
    assert "Failed to export run" in caplog.text


async def test_transcripts_written(broadcaster, fast_retry, tmp_path):
    agents = [make_agent(p) for p in _panel(["grok", "gpt"], ["gpt", "grok"])]
    await _orchestrator(broadcaster, fast_retry, answers_dir=tmp_path).process_question(
        "Q?", 1, agents, question_ts=7,
    )

    names = sorted(p.name for p in (tmp_path / "7").iterdir())
    assert names == ["rank_gpt-model.log", "rank_grok-model.log", "round1_gpt-model.log", "round1_grok-model.log"]


@pytest.mark.parametrize("rounds", [0, -1])
async def test_invalid_round_count(broadcaster, fast_retry, three_agents, rounds):
    with pytest.raises(ValueError):
        await _orchestrator(broadcaster, fast_retry).process_question("Q?", rounds, three_agents)
    assert broadcaster.messages == []


async def test_duplicate_agent_ids_rejected(broadcaster, fast_retry):
    agents = [make_agent(MockProvider("grok")), make_agent(MockProvider("grok"))]
    with pytest.raises(ValueError, match="duplicate"):
        await _orchestrator(broadcaster, fast_retry).process_question("Q?", 1, agents)


async def test_empty_agents_rejected(broadcaster, fast_retry):
    with pytest.raises(ValueError):
        await _orchestrator(broadcaster, fast_retry).process_question("Q?", 1, [])
