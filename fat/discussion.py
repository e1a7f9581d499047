"""Agent-to-agent discussion threads, merged after each round."""

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType

from fat.models import Agent, DiscussionMessage

logger = logging.getLogger(__name__)

# agent id -> other agent id -> messages, oldest first
ThreadSnapshot = Mapping[str, Mapping[str, tuple[DiscussionMessage, ...]]]


@dataclass(frozen=True)
class NameMatch:
    agent_id: str
    found: bool


@dataclass(frozen=True)
class UnresolvableTarget:
    """A discussion target that could not be mapped onto an active agent."""

    name: str
    sender: str
    round: int
    reason: str = "no matching agent"


def normalize_agent_name(name: str, agents: Sequence[Agent]) -> NameMatch:
    """Map free-text ``name`` from model output onto an active agent id.

    Exact (case-insensitive) match on id or variant name wins; otherwise the
    first agent whose id or variant name contains ``name``, or is contained
    in it, is used.
    """
    needle = name.strip().lower()
    if not needle:
        return NameMatch("", False)

    for agent in agents:
        if needle in (agent.id.lower(), agent.name.lower()):
            return NameMatch(agent.id, True)

    for agent in agents:
        for candidate in (agent.name.lower(), agent.id.lower()):
            if needle in candidate or candidate in needle:
                return NameMatch(agent.id, True)

    return NameMatch("", False)


class DiscussionState:
    """Append-only threads, stored once under each participant's own view."""

    def __init__(self) -> None:
        self._threads: dict[str, dict[str, list[DiscussionMessage]]] = {}

    def thread(self, agent_id: str, other_id: str) -> tuple[DiscussionMessage, ...]:
        return tuple(self._threads.get(agent_id, {}).get(other_id, ()))

    def threads_for(self, agent_id: str) -> dict[str, tuple[DiscussionMessage, ...]]:
        return {other: tuple(msgs) for other, msgs in self._threads.get(agent_id, {}).items()}

    def append(self, sender_id: str, target_id: str, message: str, round_number: int) -> DiscussionMessage:
        msg = DiscussionMessage(sender=sender_id, message=message, round=round_number)
        self._threads.setdefault(sender_id, {}).setdefault(target_id, []).append(msg)
        self._threads.setdefault(target_id, {}).setdefault(sender_id, []).append(msg)
        return msg

    def merge(
        self,
        sender_id: str,
        targets: Mapping[str, str],
        round_number: int,
        agents: Sequence[Agent],
    ) -> list[UnresolvableTarget]:
        """Merge one reply's discussion section. Returns the targets that were dropped."""
        dropped: list[UnresolvableTarget] = []
        for target_name, message in targets.items():
            if not message.strip():
                continue

            match = normalize_agent_name(target_name, agents)
            if not match.found:
                logger.warning(
                    "Could not normalize agent name %r (from %s, round %d); message dropped",
                    target_name, sender_id, round_number,
                )
                dropped.append(UnresolvableTarget(target_name, sender_id, round_number))
                continue
            if match.agent_id == sender_id:
                logger.warning(
                    "Agent %s addressed itself as %r in round %d; message dropped",
                    sender_id, target_name, round_number,
                )
                dropped.append(UnresolvableTarget(target_name, sender_id, round_number, reason="self-addressed"))
                continue

            self.append(sender_id, match.agent_id, message, round_number)
        return dropped

    def snapshot(self) -> ThreadSnapshot:
        """Read-only copy; later merges do not show through."""
        return MappingProxyType({
            agent_id: MappingProxyType({other: tuple(msgs) for other, msgs in partners.items()})
            for agent_id, partners in self._threads.items()
        })

    def pairs(self) -> Iterator[tuple[str, str, tuple[DiscussionMessage, ...]]]:
        """Each unordered pair once, with its shared message log."""
        seen: set[frozenset[str]] = set()
        for agent_id, partners in self._threads.items():
            for other_id, msgs in partners.items():
                key = frozenset((agent_id, other_id))
                if key in seen or not msgs:
                    continue
                seen.add(key)
                yield agent_id, other_id, tuple(msgs)

    def message_count(self) -> int:
        return sum(len(msgs) for _, _, msgs in self.pairs())
