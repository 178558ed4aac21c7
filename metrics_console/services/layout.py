"""Drag-to-reorder state machine for the dashboard grid."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence, Union

from metrics_console.config import DEFAULT_GRID_COLUMNS
from metrics_console.schemas.dashboard import GridPosition, MetricBinding, MetricPreferenceUpdate

logger = logging.getLogger(__name__)


class ReorderStateError(RuntimeError):
    """Raised for a drag transition that is not legal in the current state."""


@dataclass(frozen=True)
class PositionUpdate:
    metric_id: int
    sort_order: int
    grid_position: GridPosition

    def to_preference(self) -> MetricPreferenceUpdate:
        # Reordering only touches visible cards
        return MetricPreferenceUpdate(
            metric_type_id=self.metric_id,
            is_visible=True,
            sort_order=self.sort_order,
            grid_position=str(self.grid_position),
        )


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Dragging:
    snapshot: tuple[MetricBinding, ...]
    dragged_id: int


@dataclass(frozen=True)
class Committing:
    snapshot: tuple[MetricBinding, ...]


ReorderState = Union[Idle, Dragging, Committing]


def visible_sorted(bindings: Iterable[MetricBinding]) -> list[MetricBinding]:
    """Visible bindings by sort order; ties keep their incoming relative order."""

    return sorted((binding for binding in bindings if binding.is_visible), key=lambda binding: binding.sort_order)


def compute_position_updates(
    ordered: Sequence[MetricBinding],
    columns: int = DEFAULT_GRID_COLUMNS,
) -> list[PositionUpdate]:
    """Sort order is the list index; the grid slot follows from it row by row."""

    if columns < 1:
        raise ValueError("columns must be at least 1")
    return [
        PositionUpdate(
            metric_id=binding.id,
            sort_order=index,
            grid_position=GridPosition.from_index(index, columns),
        )
        for index, binding in enumerate(ordered)
    ]


def move_before(items: Sequence[MetricBinding], dragged_id: int, target_id: int) -> tuple[MetricBinding, ...]:
    """Splice ``dragged_id`` out and reinsert it at ``target_id``'s resulting index."""

    moved = list(items)
    dragged_index = next((i for i, binding in enumerate(moved) if binding.id == dragged_id), None)
    if dragged_index is None or dragged_id == target_id:
        return tuple(moved)
    dragged = moved.pop(dragged_index)
    target_index = next((i for i, binding in enumerate(moved) if binding.id == target_id), None)
    if target_index is None:
        moved.insert(dragged_index, dragged)
        return tuple(moved)
    moved.insert(target_index, dragged)
    return tuple(moved)


class ReorderEngine:
    """Holds the private optimistic ordering of one dashboard during a drag.

    The authoritative binding list is never modified here. ``display_order``
    shows the optimistic copy while a drag or commit is in progress and the
    authoritative order otherwise.
    """

    def __init__(self, *, columns: int = DEFAULT_GRID_COLUMNS, enabled: bool = True) -> None:
        if columns < 1:
            raise ValueError("columns must be at least 1")
        self.columns = columns
        self.enabled = enabled
        self._state: ReorderState = Idle()

    @property
    def state(self) -> ReorderState:
        return self._state

    @property
    def is_idle(self) -> bool:
        return isinstance(self._state, Idle)

    def begin_drag(self, metric_id: int, bindings: Iterable[MetricBinding]) -> Dragging:
        if not self.enabled:
            raise ReorderStateError("Drag and drop is disabled")
        if not isinstance(self._state, Idle):
            raise ReorderStateError(f"Cannot start a drag while {type(self._state).__name__.lower()}")
        snapshot = tuple(visible_sorted(bindings))
        if not any(binding.id == metric_id for binding in snapshot):
            raise ReorderStateError(f"Metric {metric_id} is not a visible card on this dashboard")
        self._state = Dragging(snapshot=snapshot, dragged_id=metric_id)
        return self._state

    def drag_enter(self, target_id: int) -> Dragging:
        state = self._state
        if not isinstance(state, Dragging):
            raise ReorderStateError("No drag in progress")
        if target_id == state.dragged_id:
            return state
        self._state = Dragging(
            snapshot=move_before(state.snapshot, state.dragged_id, target_id),
            dragged_id=state.dragged_id,
        )
        return self._state

    def drop(self) -> list[PositionUpdate]:
        """Freeze the optimistic order and return the batch to commit."""

        state = self._state
        if not isinstance(state, Dragging):
            raise ReorderStateError("No drag in progress")
        self._state = Committing(snapshot=state.snapshot)
        updates = compute_position_updates(state.snapshot, self.columns)
        logger.debug("Reorder dropped with %d position updates", len(updates))
        return updates

    def commit_succeeded(self) -> None:
        if not isinstance(self._state, Committing):
            raise ReorderStateError("No reorder commit in progress")
        self._state = Idle()

    def commit_failed(self) -> None:
        # The optimistic copy is discarded; display falls back to the authoritative order
        if not isinstance(self._state, Committing):
            raise ReorderStateError("No reorder commit in progress")
        self._state = Idle()

    def cancel(self) -> None:
        """Abandon a drag that has not been dropped yet."""

        if isinstance(self._state, Committing):
            raise ReorderStateError("Cannot cancel a reorder that is being committed")
        self._state = Idle()

    def display_order(self, bindings: Iterable[MetricBinding]) -> list[MetricBinding]:
        state = self._state
        if isinstance(state, (Dragging, Committing)):
            return list(state.snapshot)
        return visible_sorted(bindings)


__all__ = [
    "Committing",
    "Dragging",
    "Idle",
    "PositionUpdate",
    "ReorderEngine",
    "ReorderState",
    "ReorderStateError",
    "compute_position_updates",
    "move_before",
    "visible_sorted",
]
