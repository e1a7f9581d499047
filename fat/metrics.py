"""Per-request and per-agent timing/token accounting.

Every agent owns its own ``AgentMetrics`` record, so concurrent agent tasks
never write to the same object. ``RequestMetrics`` only aggregates on read.
"""

import time
from dataclasses import dataclass, field
from typing import Any

from fat.models import Rate


@dataclass
class RoundMetrics:
    round: int
    duration_sec: float
    tokens_in: int = 0
    tokens_out: int = 0
    error: str | None = None


@dataclass
class AgentMetrics:
    agent_id: str
    rounds: list[RoundMetrics] = field(default_factory=list)
    ranking_duration_sec: float = 0.0
    ranking_tokens_in: int = 0
    ranking_tokens_out: int = 0
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    errors: list[str] = field(default_factory=list)

    def record_round(
        self,
        round_number: int,
        duration_sec: float,
        tokens_in: int = 0,
        tokens_out: int = 0,
        error: str | None = None,
    ) -> RoundMetrics:
        entry = RoundMetrics(round_number, duration_sec, tokens_in, tokens_out, error)
        if error is not None:
            self.errors.append(error)
        self.rounds.append(entry)
        self.total_tokens_in += tokens_in
        self.total_tokens_out += tokens_out
        return entry

    def record_ranking(self, duration_sec: float, tokens_in: int = 0, tokens_out: int = 0) -> None:
        self.ranking_duration_sec = duration_sec
        self.ranking_tokens_in = tokens_in
        self.ranking_tokens_out = tokens_out
        self.total_tokens_in += tokens_in
        self.total_tokens_out += tokens_out

    def cost(self, rate: Rate) -> float:
        return rate.cost(self.total_tokens_in, self.total_tokens_out)

    def avg_round_duration_sec(self) -> float:
        if not self.rounds:
            return 0.0
        return sum(r.duration_sec for r in self.rounds) / len(self.rounds)


class RequestMetrics:
    def __init__(self, request_id: str, question: str, num_rounds: int, num_agents: int) -> None:
        self.request_id = request_id
        self.question = question
        self.num_rounds = num_rounds
        self.num_agents = num_agents
        self.agents: dict[str, AgentMetrics] = {}
        self.winners: list[str] = []
        self._started = time.monotonic()
        self._finished: float | None = None

    def add_agent(self, agent_id: str) -> AgentMetrics:
        metrics = AgentMetrics(agent_id)
        self.agents[agent_id] = metrics
        return metrics

    def complete(self, winners: list[str]) -> None:
        self._finished = time.monotonic()
        self.winners = list(winners)

    @property
    def duration_sec(self) -> float:
        end = self._finished if self._finished is not None else time.monotonic()
        return end - self._started

    def summary(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "duration_ms": int(self.duration_sec * 1000),
            "num_rounds": self.num_rounds,
            "num_agents": self.num_agents,
            "total_tokens_in": sum(m.total_tokens_in for m in self.agents.values()),
            "total_tokens_out": sum(m.total_tokens_out for m in self.agents.values()),
            "error_count": sum(len(m.errors) for m in self.agents.values()),
            "winners": list(self.winners),
        }
