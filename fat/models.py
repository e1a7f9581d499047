"""Pure dataclasses for the round-table pipeline. No logic, no deps."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fat.providers.base import AIProvider


@dataclass(frozen=True)
class Rate:
    input_per_mtok: float = 0.0   # USD per 1M input tokens
    output_per_mtok: float = 0.0  # USD per 1M output tokens

    def cost(self, tokens_in: int, tokens_out: int) -> float:
        return (tokens_in * self.input_per_mtok + tokens_out * self.output_per_mtok) / 1_000_000


@dataclass(frozen=True)
class Agent:
    family_id: str         # "grok", "gpt", "claude", "gemini"
    variant_id: str        # actual model string, e.g. "grok-4-fast"
    capability: "AIProvider"
    request_timeout_sec: float | None = None  # None -> executor default
    rate: Rate = field(default_factory=Rate)

    @property
    def id(self) -> str:
        return self.family_id

    @property
    def name(self) -> str:
        return self.variant_id


@dataclass(frozen=True)
class RoundMeta:
    round: int
    total_rounds: int
    other_agents: tuple[str, ...] = ()


@dataclass(frozen=True)
class Reply:
    answer: str
    rationale: str = ""
    discussion: Mapping[str, str] = field(default_factory=dict)  # target name -> message
    raw_content: str = ""


@dataclass(frozen=True)
class DiscussionMessage:
    sender: str   # agent id
    message: str
    round: int


@dataclass(frozen=True)
class Completion:
    text: str
    tokens_in: int = 0
    tokens_out: int = 0


@dataclass(frozen=True)
class ModelResult:
    reply: Reply
    tokens_in: int
    tokens_out: int
    prompt: str = ""


@dataclass(frozen=True)
class RoundResult:
    agent_id: str
    round: int
    reply: Reply | None
    tokens_in: int = 0
    tokens_out: int = 0
    duration_sec: float = 0.0
    error: str | None = None
    prompt: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None and self.reply is not None


@dataclass(frozen=True)
class Ballot:
    ranker_id: str
    ranking: tuple[str, ...]   # agent ids, best first
    duration_sec: float = 0.0
    tokens_in: int = 0
    tokens_out: int = 0


@dataclass(frozen=True)
class RankingOutcome:
    gold: list[str]
    silver: list[str]
    bronze: list[str]
    scores: dict[str, int]
    ballots: list[Ballot] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)  # agent id -> anonymous letter
    fallback: bool = False


@dataclass
class RunResult:
    request_id: str
    question: str
    question_ts: int
    agents: list[Agent]
    rounds: list[dict[str, RoundResult]]
    replies: dict[str, Reply]
    discussion: Any            # fat.discussion.DiscussionState
    outcome: RankingOutcome
    metrics: Any               # fat.metrics.RequestMetrics
