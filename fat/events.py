"""Lifecycle events emitted to whatever transport is listening."""

from abc import ABC, abstractmethod
from typing import Any

CLEAR = "clear"
ROUND_START = "round_start"
RESPONSE = "response"
ERROR = "error"
RANKING_START = "ranking_start"
WINNER = "winner"


def make_event(event_type: str, request_id: str, **fields: Any) -> dict[str, Any]:
    return {"type": event_type, "request_id": request_id, **fields}


class Broadcaster(ABC):
    """Receives every lifecycle event of a request."""

    @abstractmethod
    def broadcast(self, message: dict[str, Any]) -> None:
        ...


class NullBroadcaster(Broadcaster):
    def broadcast(self, message: dict[str, Any]) -> None:
        pass
