"""Tests for fat/storage.py against a temporary SQLite file."""

import pytest

from fat.discussion import DiscussionState
from fat.metrics import RequestMetrics
from fat.models import Ballot, RankingOutcome, Rate, Reply, RoundResult, RunResult
from fat.storage import ResultStore
from tests.conftest import MockProvider, make_agent


def _run(request_id: str = "req-1", gold: str = "grok") -> RunResult:
    agents = [make_agent(MockProvider("grok"), rate=Rate(1.0, 2.0)), make_agent(MockProvider("gpt"))]
    metrics = RequestMetrics(request_id, "Q?", 1, 2)
    metrics.add_agent("grok").record_round(1, 1.5, 100, 50)
    metrics.add_agent("gpt").record_round(1, 0.5, 0, 0, error="timed out after 1s")
    metrics.complete([gold])

    reply = Reply(answer="42", rationale="Deep thought.", discussion={"gpt": "Answer next time."})
    rounds = [{
        "grok": RoundResult("grok", 1, reply, 100, 50, 1.5),
        "gpt": RoundResult("gpt", 1, None, duration_sec=0.5, error="timed out after 1s"),
    }]
    outcome = RankingOutcome(
        gold=[gold], silver=[], bronze=[],
        scores={"grok": 4, "gpt": 2},
        ballots=[Ballot("grok", ("grok", "gpt"), 0.2, 20, 3), Ballot("gpt", ("grok", "gpt"), 0.3, 10, 1)],
    )
    return RunResult(
        request_id=request_id,
        question="Q?",
        question_ts=1,
        agents=agents,
        rounds=rounds,
        replies={"grok": reply},
        discussion=DiscussionState(),
        outcome=outcome,
        metrics=metrics,
    )


@pytest.fixture
def store(tmp_path) -> ResultStore:
    return ResultStore(tmp_path / "db" / "fat.db")


def test_save_and_read_request(store):
    store.save_run(_run())
    record = store.get_request("req-1")

    assert record["question"] == "Q?"
    assert record["num_agents"] == 2
    assert record["winners"] == ["grok"]
    assert record["total_tokens_in"] == 100
    assert record["error_count"] == 1
    assert record["total_cost"] == pytest.approx((100 * 1.0 + 50 * 2.0) / 1_000_000)


def test_missing_request_is_none(store):
    assert store.get_request("nope") is None


def test_agent_rounds_rows(store):
    store.save_run(_run())
    rows = store.list_agent_rounds("req-1")

    by_agent = {r["agent_id"]: r for r in rows}
    assert by_agent["grok"]["answer"] == "42"
    assert by_agent["grok"]["discussion"] == {"gpt": "Answer next time."}
    assert by_agent["grok"]["duration_ms"] == 1500
    assert by_agent["gpt"]["error"] == "timed out after 1s"
    assert by_agent["gpt"]["answer"] is None


def test_resaving_keeps_one_row_per_agent_round(store):
    run = _run()
    store.save_run(run)
    store.save_run(run)
    assert len(store.list_agent_rounds("req-1")) == 2


def test_rankings_rows(store):
    store.save_run(_run())
    rankings = store.list_rankings("req-1")
    assert [r["ranker_id"] for r in rankings] == ["grok", "gpt"]
    assert rankings[0]["ranked_agents"] == ["grok", "gpt"]


def test_agent_stats_accumulate_across_runs(store):
    store.save_run(_run("req-1", gold="grok"))
    store.save_run(_run("req-2", gold="gpt"))

    (grok,) = store.agent_stats("grok")
    assert grok["total_requests"] == 2
    assert grok["total_wins"] == 1
    assert grok["total_tokens_in"] == 200
    assert grok["avg_response_time_ms"] == 1500

    (gpt,) = store.agent_stats("gpt")
    assert gpt["error_count"] == 2
    assert len(store.agent_stats()) == 2


def test_resaving_does_not_recount_agent_stats(store):
    run = _run()
    store.save_run(run)
    store.save_run(run)

    (grok,) = store.agent_stats("grok")
    assert grok["total_requests"] == 1
    assert grok["total_wins"] == 1
    assert grok["total_tokens_in"] == 100
    assert len(store.list_rankings("req-1")) == 2
