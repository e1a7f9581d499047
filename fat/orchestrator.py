"""Request lifecycle: refinement rounds, peer ranking, then reporting to the sinks."""

import asyncio
import logging
import time
import uuid
from collections.abc import Mapping, Sequence
from pathlib import Path

from fat import events
from fat.discussion import DiscussionState
from fat.events import Broadcaster
from fat.export import HtmlExporter
from fat.metrics import RequestMetrics
from fat.models import Agent, RankingOutcome, Reply, RoundResult, RunResult
from fat.ranking import RankingEngine, fallback_outcome
from fat.rounds import RoundExecutor
from fat.storage import ResultStore
from fat.transcripts import TranscriptLog

logger = logging.getLogger(__name__)


def _validate(num_rounds: int, agents: Sequence[Agent]) -> None:
    if num_rounds < 1:
        raise ValueError(f"num_rounds must be >= 1, got {num_rounds}")
    if not agents:
        raise ValueError("at least one agent is required")
    ids = [a.id for a in agents]
    duplicates = sorted({i for i in ids if ids.count(i) > 1})
    if duplicates:
        raise ValueError(f"duplicate agent ids: {', '.join(duplicates)}")


class Orchestrator:
    """Drives one question from the first round to the winner event.

    Sinks (``store``, ``exporter``) are optional; their failures are logged
    and never change the returned result.
    """

    def __init__(
        self,
        broadcaster: Broadcaster,
        executor: RoundExecutor | None = None,
        ranking: RankingEngine | None = None,
        store: ResultStore | None = None,
        exporter: HtmlExporter | None = None,
        answers_dir: Path | None = None,
    ) -> None:
        self.broadcaster = broadcaster
        self.executor = executor or RoundExecutor(broadcaster=broadcaster)
        self.ranking = ranking or RankingEngine()
        self.store = store
        self.exporter = exporter
        self.answers_dir = answers_dir

    def _emit(self, event_type: str, request_id: str, **fields) -> None:
        self.broadcaster.broadcast(events.make_event(event_type, request_id, **fields))

    async def process_question(
        self,
        question: str,
        num_rounds: int,
        agents: Sequence[Agent],
        question_ts: int | None = None,
    ) -> RunResult:
        """Run ``num_rounds`` refinement rounds, rank the final answers, report.

        Args:
            question: The question to put to every agent.
            num_rounds: Refinement rounds before ranking (>= 1).
            agents: Active agents in declaration order; ids must be unique.
            question_ts: Names the transcript folder; defaults to now.

        Returns:
            The finished run, including winner tiers and metrics.

        Raises:
            ValueError: Invalid round count or agent list.
            asyncio.CancelledError: The caller cancelled. A cancellation marker
                is written first and nothing is reported. Once ranking has begun
                a fallback ``winner`` event is still emitted before re-raising.
        """
        _validate(num_rounds, agents)
        agents = list(agents)

        request_id = str(uuid.uuid4())
        question_ts = question_ts if question_ts is not None else int(time.time())
        transcripts = TranscriptLog(self.answers_dir, question_ts) if self.answers_dir else None

        metrics = RequestMetrics(request_id, question, num_rounds, len(agents))
        for agent in agents:
            metrics.add_agent(agent.id)

        replies: dict[str, Reply] = {}
        discussion = DiscussionState()
        rounds: list[dict[str, RoundResult]] = []

        logger.info("[%s] Processing question with %d agents, %d rounds", request_id, len(agents), num_rounds)
        self._emit(events.CLEAR, request_id)

        ranking_started = False
        try:
            for round_number in range(1, num_rounds + 1):
                self._emit(events.ROUND_START, request_id, round=round_number, total=num_rounds)
                results = await self.executor.run_round(
                    request_id, round_number, num_rounds, question,
                    replies, discussion, agents, metrics, transcripts,
                )
                rounds.append(results)

            ranking_started = True
            self._emit(events.RANKING_START, request_id)
            outcome = await self.ranking.rank(question, replies, agents, metrics, request_id, transcripts)
        except asyncio.CancelledError:
            stage = "during ranking" if ranking_started else f"after {len(rounds)}/{num_rounds} rounds"
            logger.warning("[%s] Cancelled %s", request_id, stage)
            if ranking_started:
                # ranking began, so the winner is still announced
                outcome = fallback_outcome(replies, agents)
                metrics.complete(outcome.gold)
                self._emit_winner(request_id, outcome, replies, metrics)
            if transcripts is not None:
                transcripts.mark_cancelled(stage)
            raise

        metrics.complete(outcome.gold)
        run = RunResult(
            request_id=request_id,
            question=question,
            question_ts=question_ts,
            agents=agents,
            rounds=rounds,
            replies=dict(replies),
            discussion=discussion,
            outcome=outcome,
            metrics=metrics,
        )
        self._emit_winner(request_id, outcome, replies, metrics)

        self._report(run)
        logger.info("[%s] Done in %.1fs; gold=%s", request_id, metrics.duration_sec, outcome.gold)
        return run

    def _emit_winner(
        self,
        request_id: str,
        outcome: RankingOutcome,
        replies: Mapping[str, Reply],
        metrics: RequestMetrics,
    ) -> None:
        winner_reply = replies.get(outcome.gold[0]) if outcome.gold else None
        self._emit(
            events.WINNER, request_id,
            gold=list(outcome.gold),
            silver=list(outcome.silver),
            bronze=list(outcome.bronze),
            answer=winner_reply.answer if winner_reply else "",
            scores=dict(outcome.scores),
            metrics=metrics.summary(),
        )

    def _report(self, run: RunResult) -> None:
        if self.store is not None:
            try:
                self.store.save_run(run)
            except Exception as exc:
                logger.error("[%s] Failed to persist run: %s", run.request_id, exc)

        if self.exporter is not None:
            try:
                self.exporter.export(run)
            except Exception as exc:
                logger.error("[%s] Failed to export run: %s", run.request_id, exc)
