"""SQLite persistence for finished runs and lifetime per-agent statistics."""

import json
import logging
import sqlite3
from contextlib import closing
from pathlib import Path
from typing import Any

from fat.models import RunResult

logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 30.0  # busy timeout for concurrent writers

_SCHEMA = """
CREATE TABLE IF NOT EXISTS requests (
    id TEXT PRIMARY KEY,
    question TEXT NOT NULL,
    num_rounds INTEGER NOT NULL,
    num_agents INTEGER NOT NULL,
    winners TEXT NOT NULL,
    total_duration_ms INTEGER,
    total_tokens_in INTEGER,
    total_tokens_out INTEGER,
    total_cost REAL,
    error_count INTEGER,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS agent_rounds (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    request_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    agent_name TEXT NOT NULL,
    round INTEGER NOT NULL,
    duration_ms INTEGER NOT NULL,
    tokens_in INTEGER NOT NULL,
    tokens_out INTEGER NOT NULL,
    cost REAL,
    error TEXT,
    answer TEXT,
    rationale TEXT,
    discussion TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (request_id) REFERENCES requests(id),
    UNIQUE(request_id, agent_id, round)
);

CREATE TABLE IF NOT EXISTS rankings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    request_id TEXT NOT NULL,
    ranker_id TEXT NOT NULL,
    ranked_agents TEXT NOT NULL,
    duration_ms INTEGER NOT NULL,
    tokens_in INTEGER NOT NULL,
    tokens_out INTEGER NOT NULL,
    cost REAL,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY (request_id) REFERENCES requests(id)
);

CREATE TABLE IF NOT EXISTS agent_stats (
    agent_id TEXT PRIMARY KEY,
    agent_name TEXT NOT NULL,
    total_requests INTEGER DEFAULT 0,
    total_wins INTEGER DEFAULT 0,
    total_tokens_in INTEGER DEFAULT 0,
    total_tokens_out INTEGER DEFAULT 0,
    total_cost REAL DEFAULT 0,
    avg_response_time_ms INTEGER DEFAULT 0,
    error_count INTEGER DEFAULT 0,
    last_used TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_requests_created ON requests(created_at);
CREATE INDEX IF NOT EXISTS idx_agent_rounds_request ON agent_rounds(request_id);
CREATE INDEX IF NOT EXISTS idx_rankings_request ON rankings(request_id);
"""

_UPSERT_STATS = """
INSERT INTO agent_stats (
    agent_id, agent_name, total_requests, total_wins, total_tokens_in,
    total_tokens_out, total_cost, avg_response_time_ms, error_count,
    last_used, updated_at
) VALUES (?, ?, 1, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
ON CONFLICT(agent_id) DO UPDATE SET
    agent_name = excluded.agent_name,
    total_wins = total_wins + excluded.total_wins,
    total_tokens_in = total_tokens_in + excluded.total_tokens_in,
    total_tokens_out = total_tokens_out + excluded.total_tokens_out,
    total_cost = total_cost + excluded.total_cost,
    avg_response_time_ms =
        (avg_response_time_ms * total_requests + excluded.avg_response_time_ms) / (total_requests + 1),
    error_count = error_count + excluded.error_count,
    total_requests = total_requests + 1,
    last_used = CURRENT_TIMESTAMP,
    updated_at = CURRENT_TIMESTAMP
"""


class ResultStore:
    """One SQLite file; a short-lived connection per operation."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.executescript(_SCHEMA)
            conn.commit()
        logger.debug("Result store initialized: %s", self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=_TIMEOUT_SECONDS)
        conn.row_factory = sqlite3.Row
        return conn

    def save_run(self, run: RunResult) -> None:
        """Write the request, every agent-round, every ballot, and update agent stats.

        Saving the same request again rewrites its rows but leaves agent stats
        as they were, so each run is counted once.

        All rows go in one transaction.

        Raises:
            sqlite3.Error: On any database failure; nothing is written.
        """
        summary = run.metrics.summary()
        rates = {agent.id: agent.rate for agent in run.agents}
        total_cost = sum(
            m.cost(rates[agent_id]) for agent_id, m in run.metrics.agents.items() if agent_id in rates
        )

        with closing(self._connect()) as conn, conn:
            already_saved = conn.execute(
                "SELECT 1 FROM requests WHERE id = ?", (run.request_id,)
            ).fetchone() is not None

            conn.execute(
                """
                INSERT OR REPLACE INTO requests (
                    id, question, num_rounds, num_agents, winners, total_duration_ms,
                    total_tokens_in, total_tokens_out, total_cost, error_count
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    run.request_id,
                    run.question,
                    summary["num_rounds"],
                    summary["num_agents"],
                    json.dumps(summary["winners"]),
                    summary["duration_ms"],
                    summary["total_tokens_in"],
                    summary["total_tokens_out"],
                    total_cost,
                    summary["error_count"],
                ),
            )

            names = {agent.id: agent.name for agent in run.agents}
            for round_results in run.rounds:
                for agent_id, result in round_results.items():
                    reply = result.reply
                    conn.execute(
                        """
                        INSERT OR REPLACE INTO agent_rounds (
                            request_id, agent_id, agent_name, round, duration_ms, tokens_in,
                            tokens_out, cost, error, answer, rationale, discussion
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            run.request_id,
                            agent_id,
                            names.get(agent_id, agent_id),
                            result.round,
                            int(result.duration_sec * 1000),
                            result.tokens_in,
                            result.tokens_out,
                            rates[agent_id].cost(result.tokens_in, result.tokens_out) if agent_id in rates else 0.0,
                            result.error,
                            reply.answer if reply else None,
                            reply.rationale if reply else None,
                            json.dumps(dict(reply.discussion)) if reply else None,
                        ),
                    )

            conn.execute("DELETE FROM rankings WHERE request_id = ?", (run.request_id,))
            for ballot in run.outcome.ballots:
                rate = rates.get(ballot.ranker_id)
                conn.execute(
                    """
                    INSERT INTO rankings (
                        request_id, ranker_id, ranked_agents, duration_ms, tokens_in, tokens_out, cost
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        run.request_id,
                        ballot.ranker_id,
                        json.dumps(list(ballot.ranking)),
                        int(ballot.duration_sec * 1000),
                        ballot.tokens_in,
                        ballot.tokens_out,
                        rate.cost(ballot.tokens_in, ballot.tokens_out) if rate else 0.0,
                    ),
                )

            if already_saved:
                logger.debug("[%s] Run saved before; agent stats left unchanged", run.request_id)
            else:
                self._update_stats(conn, run)

        logger.info("[%s] Saved run to %s", run.request_id, self.db_path)

    def _update_stats(self, conn: sqlite3.Connection, run: RunResult) -> None:
        gold = set(run.outcome.gold)
        for agent in run.agents:
            m = run.metrics.agents.get(agent.id)
            if m is None:
                continue
            conn.execute(
                _UPSERT_STATS,
                (
                    agent.id,
                    agent.name,
                    int(agent.id in gold),
                    m.total_tokens_in,
                    m.total_tokens_out,
                    m.cost(agent.rate),
                    int(m.avg_round_duration_sec() * 1000),
                    len(m.errors),
                ),
            )

    def get_request(self, request_id: str) -> dict[str, Any] | None:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM requests WHERE id = ?", (request_id,)).fetchone()
        if row is None:
            return None
        record = dict(row)
        record["winners"] = json.loads(record["winners"])
        return record

    def list_agent_rounds(self, request_id: str) -> list[dict[str, Any]]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT * FROM agent_rounds WHERE request_id = ? ORDER BY round, id",
                (request_id,),
            ).fetchall()
        records = []
        for row in rows:
            record = dict(row)
            if record["discussion"] is not None:
                record["discussion"] = json.loads(record["discussion"])
            records.append(record)
        return records

    def list_rankings(self, request_id: str) -> list[dict[str, Any]]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT * FROM rankings WHERE request_id = ? ORDER BY id",
                (request_id,),
            ).fetchall()
        records = []
        for row in rows:
            record = dict(row)
            record["ranked_agents"] = json.loads(record["ranked_agents"])
            records.append(record)
        return records

    def agent_stats(self, agent_id: str | None = None) -> list[dict[str, Any]]:
        """Lifetime stats for one agent, or for all agents by wins."""
        with closing(self._connect()) as conn:
            if agent_id is None:
                rows = conn.execute("SELECT * FROM agent_stats ORDER BY total_wins DESC, agent_id").fetchall()
            else:
                rows = conn.execute("SELECT * FROM agent_stats WHERE agent_id = ?", (agent_id,)).fetchall()
        return [dict(row) for row in rows]
