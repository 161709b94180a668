"""Navigation data models."""

from dataclasses import dataclass
from typing import Any, NamedTuple


@dataclass(frozen=True)
class NavigationEvent:
    """One successful route change within a session."""

    route: str
    timestamp: float
    session_id: str


@dataclass
class TransitionRecord:
    """Aggregated count for one ``from_route -> to_route`` edge.

    ``last_seen_seq`` is the model's update counter at the last observation;
    it orders ties deterministically even when timestamps collide.
    """

    from_route: str
    to_route: str
    count: int = 0
    last_seen_at: float = 0.0
    last_seen_seq: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "from": self.from_route,
            "to": self.to_route,
            "count": self.count,
            "last_seen_at": self.last_seen_at,
            "last_seen_seq": self.last_seen_seq,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TransitionRecord":
        return cls(
            from_route=str(data["from"]),
            to_route=str(data["to"]),
            count=int(data["count"]),
            last_seen_at=float(data.get("last_seen_at", 0.0)),
            last_seen_seq=int(data.get("last_seen_seq", 0)),
        )


class Prediction(NamedTuple):
    """A candidate next route and its estimated probability."""

    route: str
    probability: float
