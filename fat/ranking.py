"""Anonymous peer ranking of final answers, aggregated with a Borda count."""

import asyncio
import logging
import random
import re
import string
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from fat.metrics import RequestMetrics
from fat.models import Agent, Ballot, RankingOutcome, Reply
from fat.transcripts import TranscriptLog

logger = logging.getLogger(__name__)

LETTERS = string.ascii_uppercase

# Lines a model tends to echo back from the ranking instructions
_BOILERPLATE = (
    "IMPORTANT:",
    "Do NOT",
    "ONLY output",
    "Reorder",
    "one per line",
    "best to worst",
    "YOUR RESPONSE",
    "EXACT FORMAT",
    "NO OTHER TEXT",
)
_DECORATION_PREFIXES = ("(", "═", "╔", "╚", "║", "```", "[", "]")
_LIST_MARKER_RE = re.compile(r"^(?:\d+[.)]\s*|[-*•]\s+)")
_SEPARATOR_RE = re.compile(r"\s*(?:,|>)\s*")

_RANKING_PROMPT = """\
RANKING MODE - NOT WRITING MODE

You are acting as a JUDGE, not as a writer.
Judge and rank the answers shown below. Do NOT write a new answer to the question,
do NOT use # ANSWER or # RATIONALE sections, and do NOT explain your ranking.

# ORIGINAL QUESTION (for context only - DO NOT answer this)

{question}

# ANSWERS TO RANK

{answers}# YOUR TASK

Evaluate and rank ONLY the answers shown above.

PROMPT ADHERENCE IS MANDATORY. If the original question specifies format
requirements (word count, length, structure, style), answers that violate them
MUST be ranked significantly lower, regardless of content quality.

Ranking criteria (for answers that follow the prompt):
- **Accuracy** (40%): Correctness and precision
- **Completeness** (30%): Addresses all aspects of the question
- **Clarity** (20%): Well-structured and understandable
- **Insight** (10%): Depth and originality

Be objective. Judge on merit, not identity.

# YOUR RESPONSE FORMAT

Output ONLY agent letters, one per line, ordered from best to worst.
NO sections, NO explanations, NO commentary. JUST the list, for example:

{example}
"""


@dataclass(frozen=True)
class AnonymizationMap:
    """Agent id <-> single-letter label, shared by every ranker in one request."""

    by_agent: Mapping[str, str]
    by_label: Mapping[str, str]

    @classmethod
    def create(cls, agent_ids: Sequence[str], rng: random.Random | None = None) -> "AnonymizationMap":
        """Assign a uniform random permutation of the first ``len(agent_ids)`` letters.

        Raises:
            ValueError: More agents than letters.
        """
        if len(agent_ids) > len(LETTERS):
            raise ValueError(f"cannot anonymize {len(agent_ids)} agents with {len(LETTERS)} labels")
        rng = rng or random.Random()
        labels = rng.sample(LETTERS[:len(agent_ids)], len(agent_ids))
        by_agent = dict(zip(agent_ids, labels))
        return cls(by_agent=by_agent, by_label={label: agent for agent, label in by_agent.items()})

    def label_for(self, agent_id: str) -> str:
        return self.by_agent[agent_id]

    def agent_for(self, label: str) -> str | None:
        return self.by_label.get(label)


def format_ranking_prompt(question: str, labelled_answers: Mapping[str, str]) -> str:
    """Judge-mode prompt. ``labelled_answers`` maps anonymous label -> answer text."""
    labels = sorted(labelled_answers)
    answers = "".join(f"## Agent {label}\n\n{labelled_answers[label].strip()}\n\n" for label in labels)
    return _RANKING_PROMPT.format(
        question=question,
        answers=answers,
        example="\n".join(labels),
    )


def _is_noise(line: str) -> bool:
    return line.startswith(_DECORATION_PREFIXES) or any(marker in line for marker in _BOILERPLATE)


def _clean(line: str) -> str:
    token = _LIST_MARKER_RE.sub("", line.strip())
    token = token.replace("*", "").strip()
    if token.lower().startswith("agent "):
        token = token[len("agent "):]
    token = token.strip().rstrip(",.;:").strip("\"'")
    return token.rstrip(",.;:").strip()


def _letters_in(token: str) -> list[str]:
    if len(token) == 1:
        return [token.upper()] if token.isalpha() else []
    parts = [_clean(p) for p in _SEPARATOR_RE.split(token)]
    if len(parts) > 1 and all(len(p) == 1 and p.isalpha() for p in parts):
        return [p.upper() for p in parts]
    return []


def parse_ballot(content: str, anon_map: AnonymizationMap) -> list[str] | None:
    """Decode a ranking response into agent ids, best first.

    Returns None when nothing usable was found, including when the model wrote
    an ``# ANSWER`` section instead of judging.
    """
    if "# ANSWER" in content:
        logger.debug("Ranking response contains an answer section; ignored")
        return None

    lines = content.splitlines()
    if any(line.strip().upper().startswith("# RANKING") for line in lines):
        collecting = False
    else:
        collecting = True

    ranking: list[str] = []
    for raw in lines:
        line = raw.strip()
        if line.upper().startswith("# RANKING"):
            collecting = True
            continue
        if line.startswith("#"):
            if collecting and ranking:
                break
            continue
        if not collecting or not line or _is_noise(line):
            continue

        for letter in _letters_in(_clean(line)):
            agent_id = anon_map.agent_for(letter)
            if agent_id is None:
                logger.debug("Unknown label %r in ranking", letter)
                continue
            if agent_id not in ranking:
                ranking.append(agent_id)

    return ranking or None


def borda_scores(ballots: Sequence[Ballot], agent_ids: Sequence[str]) -> dict[str, int]:
    """First place earns ``len(agent_ids)`` points, each later place one less; omitted agents earn 0."""
    scores = {agent_id: 0 for agent_id in agent_ids}
    n = len(agent_ids)
    for ballot in ballots:
        points = n
        for agent_id in ballot.ranking:
            if agent_id not in scores:
                continue
            scores[agent_id] += points
            points -= 1
    return scores


def assign_tiers(scores: Mapping[str, int], agent_ids: Sequence[str]) -> tuple[list[str], list[str], list[str]]:
    """Gold, silver and bronze: the agents at each of the three highest distinct scores."""
    distinct = sorted({scores.get(a, 0) for a in agent_ids}, reverse=True)
    tiers: list[list[str]] = []
    for score in distinct[:3]:
        tiers.append([a for a in agent_ids if scores.get(a, 0) == score])
    while len(tiers) < 3:
        tiers.append([])
    return tiers[0], tiers[1], tiers[2]


def fallback_outcome(
    final_replies: Mapping[str, Reply],
    agents: Sequence[Agent],
    labels: Mapping[str, str] | None = None,
) -> RankingOutcome:
    """Gold for the first agent with a reply (else the first agent), all scores zero."""
    winner = next((a.id for a in agents if a.id in final_replies), agents[0].id)
    return RankingOutcome(
        gold=[winner],
        silver=[],
        bronze=[],
        scores={a.id: 0 for a in agents},
        labels=dict(labels or {}),
        fallback=True,
    )


class RankingEngine:
    """Asks every agent to rank all final answers, then aggregates the ballots."""

    def __init__(
        self,
        default_timeout_sec: float = 120.0,
        rng: random.Random | None = None,
        transcripts: TranscriptLog | None = None,
    ) -> None:
        self.default_timeout_sec = default_timeout_sec
        self.rng = rng or random.Random()
        self.transcripts = transcripts

    async def _collect_ballot(
        self,
        agent: Agent,
        prompt: str,
        anon_map: AnonymizationMap,
        metrics: RequestMetrics | None,
        request_id: str,
        transcripts: TranscriptLog | None,
    ) -> Ballot | None:
        timeout = agent.request_timeout_sec or self.default_timeout_sec
        start = time.monotonic()
        try:
            async with asyncio.timeout(timeout):
                completion = await agent.capability.complete(prompt)
        except TimeoutError:
            logger.warning("[%s] Ranking by %s timed out after %gs", request_id, agent.id, timeout)
            return None
        except Exception as exc:
            logger.warning("[%s] Ranking by %s failed: %s", request_id, agent.id, exc)
            return None
        duration = time.monotonic() - start

        if metrics is not None:
            agent_metrics = metrics.agents.get(agent.id) or metrics.add_agent(agent.id)
            agent_metrics.record_ranking(duration, completion.tokens_in, completion.tokens_out)
        if transcripts is not None:
            transcripts.record("rank", agent.name, prompt, completion.text)

        ranking = parse_ballot(completion.text, anon_map)
        if ranking is None:
            logger.warning("[%s] %s gave no usable ranking", request_id, agent.id)
            return None

        logger.info("[%s] %s ranked: %s", request_id, agent.id, ", ".join(ranking))
        return Ballot(
            ranker_id=agent.id,
            ranking=tuple(ranking),
            duration_sec=duration,
            tokens_in=completion.tokens_in,
            tokens_out=completion.tokens_out,
        )

    async def rank(
        self,
        question: str,
        final_replies: Mapping[str, Reply],
        agents: Sequence[Agent],
        metrics: RequestMetrics | None = None,
        request_id: str = "",
        transcripts: TranscriptLog | None = None,
    ) -> RankingOutcome:
        """Run one anonymous ranking pass and return the winner tiers.

        Args:
            question: The original question, shown to the judges for context.
            final_replies: Latest reply per agent id. Agents without one are
                still rankers and still get a score.
            agents: Active agents in declaration order.
            metrics: Receives per-agent ranking duration and tokens.
            request_id: Used in log lines only.
            transcripts: Overrides the engine-wide transcript log for this call.

        Raises:
            ValueError: ``agents`` is empty.
        """
        if not agents:
            raise ValueError("cannot rank with no agents")

        agent_ids = [a.id for a in agents]
        anon_map = AnonymizationMap.create(agent_ids, self.rng)
        labelled = {
            anon_map.label_for(agent_id): final_replies[agent_id].answer
            for agent_id in agent_ids
            if agent_id in final_replies
        }
        prompt = format_ranking_prompt(question, labelled)

        logger.info("[%s] Starting ranking with %d agents", request_id, len(agents))
        log = transcripts or self.transcripts
        results = await asyncio.gather(*(
            self._collect_ballot(agent, prompt, anon_map, metrics, request_id, log) for agent in agents
        ))
        ballots = [b for b in results if b is not None]
        labels = dict(anon_map.by_agent)

        if not ballots:
            outcome = fallback_outcome(final_replies, agents, labels)
            logger.warning("[%s] No valid ballots; falling back to %s", request_id, outcome.gold[0])
            return outcome

        scores = borda_scores(ballots, agent_ids)
        gold, silver, bronze = assign_tiers(scores, agent_ids)
        logger.info(
            "[%s] Ranking complete from %d/%d ballots: gold=%s silver=%s bronze=%s",
            request_id, len(ballots), len(agents), gold, silver, bronze,
        )
        return RankingOutcome(
            gold=gold,
            silver=silver,
            bronze=bronze,
            scores=scores,
            ballots=ballots,
            labels=labels,
        )
