"""Frequency-count Markov model of route transitions."""

import json
import logging
import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from typing import Any

from authcache.navigation.models import Prediction, TransitionRecord


logger = logging.getLogger(__name__)

STATE_FORMAT_VERSION = 1


class TransitionModel:
    """Counts of observed ``from -> to`` route transitions.

    ``P(to | from) = count(from, to) / sum(count(from, *))``. Every
    ``decay_interval`` updates all counts are halved and edges reaching zero
    are dropped, so space stays proportional to distinct recent edges and
    recent behavior outweighs old habits.

    Only ``NavigationTracker`` should call ``update``.
    """

    def __init__(
        self,
        decay_interval: int | None = 100,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize transition model.

        Args:
            decay_interval: Updates between automatic decay passes; None disables
            clock: Time source for ``last_seen_at``
        """
        self.decay_interval = decay_interval
        self._clock = clock
        self._edges: dict[str, dict[str, TransitionRecord]] = {}
        self._seq = 0
        self._updates_since_decay = 0

    @property
    def edge_count(self) -> int:
        return sum(len(targets) for targets in self._edges.values())

    @property
    def update_count(self) -> int:
        """Total updates applied since creation or the last ``load_state``."""
        return self._seq

    def update(self, from_route: str, to_route: str, now: float | None = None) -> None:
        """Count one observed transition."""
        targets = self._edges.setdefault(from_route, {})
        record = targets.get(to_route)
        if record is None:
            record = TransitionRecord(from_route=from_route, to_route=to_route)
            targets[to_route] = record

        self._seq += 1
        record.count += 1
        record.last_seen_at = self._clock() if now is None else now
        record.last_seen_seq = self._seq

        self._updates_since_decay += 1
        if self.decay_interval and self._updates_since_decay >= self.decay_interval:
            self.decay()

    def predict(self, from_route: str, k: int = 3) -> list[Prediction]:
        """Most likely next routes after ``from_route``.

        Returns:
            At most ``k`` predictions by descending probability, most recently
            seen first on ties. Empty when ``from_route`` was never left.
        """
        targets = self._edges.get(from_route)
        if not targets or k <= 0:
            return []

        total = sum(record.count for record in targets.values())
        if total == 0:
            return []

        ranked = sorted(
            targets.values(),
            key=lambda record: (-record.count, -record.last_seen_seq),
        )
        return [
            Prediction(route=record.to_route, probability=record.count / total)
            for record in ranked[:k]
        ]

    def decay(self) -> int:
        """Halve every count and drop edges that reach zero.

        Returns:
            Number of edges pruned
        """
        pruned = 0
        for from_route in list(self._edges):
            targets = self._edges[from_route]
            for to_route in list(targets):
                record = targets[to_route]
                record.count //= 2
                if record.count == 0:
                    del targets[to_route]
                    pruned += 1
            if not targets:
                del self._edges[from_route]

        self._updates_since_decay = 0
        logger.debug("Transition decay pruned %d edges, %d left", pruned, self.edge_count)
        return pruned

    def record(self, from_route: str, to_route: str) -> TransitionRecord | None:
        """A copy of one edge's aggregate, or None if it is not tracked."""
        record = self._edges.get(from_route, {}).get(to_route)
        return replace(record) if record is not None else None

    def routes(self) -> set[str]:
        """Every route appearing on either side of a tracked edge."""
        result = set(self._edges)
        for targets in self._edges.values():
            result.update(targets)
        return result

    def clear(self) -> None:
        self._edges.clear()
        self._seq = 0
        self._updates_since_decay = 0

    def export_state(self) -> dict[str, Any]:
        """Aggregated edge counts as a JSON-compatible document."""
        return {
            "format_version": STATE_FORMAT_VERSION,
            "seq": self._seq,
            "updates_since_decay": self._updates_since_decay,
            "edges": [
                record.to_dict()
                for targets in self._edges.values()
                for record in targets.values()
            ],
        }

    def load_state(self, state: dict[str, Any]) -> None:
        """Replace the model with a document produced by ``export_state``.

        Raises:
            ValueError: If the document is not a valid model state
        """
        if not isinstance(state, dict):
            raise ValueError("Transition model state must be a mapping")
        if state.get("format_version") != STATE_FORMAT_VERSION:
            raise ValueError(
                f"Unsupported transition model state version: {state.get('format_version')}"
            )

        edges: dict[str, dict[str, TransitionRecord]] = {}
        try:
            for item in state["edges"]:
                record = TransitionRecord.from_dict(item)
                if record.count > 0:
                    edges.setdefault(record.from_route, {})[record.to_route] = record
            seq = int(state.get("seq", 0))
            updates_since_decay = int(state.get("updates_since_decay", 0))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid transition model state: {e}") from e

        self._edges = edges
        self._seq = max(
            [seq, *(r.last_seen_seq for t in edges.values() for r in t.values())]
        )
        self._updates_since_decay = updates_since_decay

    def save(self, path: Path) -> None:
        """Write the aggregated state to ``path`` atomically."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.export_state(), f, separators=(",", ":"))
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Saved transition model (%d edges) to %s", self.edge_count, path)

    def load(self, path: Path) -> bool:
        """Load state saved by ``save``.

        Returns:
            False if ``path`` does not exist

        Raises:
            ValueError: If the file holds an invalid state
        """
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return False

        try:
            state = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid transition model file {path}: {e}") from e

        self.load_state(state)
        logger.debug("Loaded transition model (%d edges) from %s", self.edge_count, path)
        return True
