"""Parallel execution of one round: every agent at once, merged after the barrier."""

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence

from fat import events
from fat.discussion import DiscussionState, ThreadSnapshot
from fat.events import Broadcaster, NullBroadcaster
from fat.metrics import RequestMetrics
from fat.models import Agent, ModelResult, Reply, RoundMeta, RoundResult
from fat.retry import RetryError, RetryPolicy
from fat.transcripts import TranscriptLog

logger = logging.getLogger(__name__)


class RoundExecutor:
    """Runs one round for all agents and folds the results back into shared state.

    Shared state (``replies``, ``discussion``, metrics) is only written in the
    merge step after every agent task has finished.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        default_timeout_sec: float = 120.0,
        broadcaster: Broadcaster | None = None,
        transcripts: TranscriptLog | None = None,
    ) -> None:
        self.retry_policy = retry_policy or RetryPolicy()
        self.default_timeout_sec = default_timeout_sec
        self.broadcaster = broadcaster or NullBroadcaster()
        self.transcripts = transcripts

    def timeout_for(self, agent: Agent) -> float:
        return agent.request_timeout_sec or self.default_timeout_sec

    async def _run_agent(
        self,
        agent: Agent,
        round_number: int,
        total_rounds: int,
        question: str,
        replies: Mapping[str, Reply],
        threads: ThreadSnapshot,
        agents: Sequence[Agent],
    ) -> RoundResult:
        meta = RoundMeta(
            round=round_number,
            total_rounds=total_rounds,
            other_agents=tuple(a.name for a in agents if a.id != agent.id),
        )
        timeout = self.timeout_for(agent)
        label = f"{agent.id} round {round_number}"

        async def attempt() -> ModelResult:
            return await agent.capability.prompt(question, meta, replies, threads)

        start = time.monotonic()
        try:
            async with asyncio.timeout(timeout):
                result = await self.retry_policy.execute(attempt, label=label)
        except TimeoutError:
            error = f"timed out after {timeout:g}s"
        except RetryError as exc:
            error = str(exc)
        except Exception as exc:
            logger.exception("Unexpected failure for %s", label)
            error = f"unexpected error: {exc}"
        else:
            return RoundResult(
                agent_id=agent.id,
                round=round_number,
                reply=result.reply,
                tokens_in=result.tokens_in,
                tokens_out=result.tokens_out,
                duration_sec=time.monotonic() - start,
                prompt=result.prompt,
            )

        return RoundResult(
            agent_id=agent.id,
            round=round_number,
            reply=None,
            duration_sec=time.monotonic() - start,
            error=error,
        )

    async def run_round(
        self,
        request_id: str,
        round_number: int,
        total_rounds: int,
        question: str,
        replies: dict[str, Reply],
        discussion: DiscussionState,
        agents: Sequence[Agent],
        metrics: RequestMetrics,
        transcripts: TranscriptLog | None = None,
    ) -> dict[str, RoundResult]:
        """Run every agent for ``round_number`` and merge the results.

        Args:
            request_id: Carried on every emitted event.
            round_number: 1-based.
            total_rounds: Shown to the agents in their prompt.
            question: The question under discussion.
            replies: Latest reply per agent id; updated in place after the barrier.
            discussion: Thread state; updated in place after the barrier.
            agents: Active agents in declaration order.
            metrics: Request metrics; one ``AgentMetrics`` per agent id.
            transcripts: Overrides the executor-wide transcript log for this call.

        Returns:
            Result per agent id, in declaration order.
        """
        frozen_replies = dict(replies)
        frozen_threads = discussion.snapshot()

        logger.info("[%s] Starting round %d/%d with %d agents", request_id, round_number, total_rounds, len(agents))

        results = await asyncio.gather(*(
            self._run_agent(agent, round_number, total_rounds, question, frozen_replies, frozen_threads, agents)
            for agent in agents
        ))

        log = transcripts or self.transcripts
        by_id: dict[str, RoundResult] = {}
        for agent, result in zip(agents, results):
            by_id[agent.id] = result
            self._merge(request_id, agent, result, replies, discussion, agents, metrics, log)

        ok = sum(1 for r in results if r.ok)
        logger.info("[%s] Round %d complete: %d/%d agents succeeded", request_id, round_number, ok, len(agents))
        return by_id

    def _merge(
        self,
        request_id: str,
        agent: Agent,
        result: RoundResult,
        replies: dict[str, Reply],
        discussion: DiscussionState,
        agents: Sequence[Agent],
        metrics: RequestMetrics,
        transcripts: TranscriptLog | None,
    ) -> None:
        agent_metrics = metrics.agents.get(agent.id) or metrics.add_agent(agent.id)
        agent_metrics.record_round(
            result.round, result.duration_sec, result.tokens_in, result.tokens_out, result.error,
        )

        if not result.ok:
            logger.warning("[%s] %s failed in round %d: %s", request_id, agent.id, result.round, result.error)
            self.broadcaster.broadcast(events.make_event(
                events.ERROR, request_id,
                model=agent.id,
                round=result.round,
                error=result.error,
            ))
            return

        reply = result.reply
        if transcripts is not None:
            transcripts.record(f"round{result.round}", agent.name, result.prompt, reply.raw_content)

        self.broadcaster.broadcast(events.make_event(
            events.RESPONSE, request_id,
            model=agent.id,
            round=result.round,
            answer=reply.answer,
            rationale=reply.rationale,
            discussion=dict(reply.discussion),
            tokens_in=result.tokens_in,
            tokens_out=result.tokens_out,
            cost=agent.rate.cost(result.tokens_in, result.tokens_out),
        ))

        replies[agent.id] = reply
        discussion.merge(agent.id, reply.discussion, result.round, agents)
