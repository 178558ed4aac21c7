"""Grid reorder tests."""

from __future__ import annotations

import pytest

from metrics_console.schemas.dashboard import GridPosition, MetricBinding
from metrics_console.services.layout import (
    Committing,
    Dragging,
    Idle,
    ReorderEngine,
    ReorderStateError,
    compute_position_updates,
    move_before,
    visible_sorted,
)


def build_bindings(count: int = 5) -> list[MetricBinding]:
    return [
        MetricBinding(id=100 + index, name=f"metric_{index}", sort_order=index, grid_position=f"0,{index}")
        for index in range(count)
    ]


def test_dragging_fourth_card_to_the_front():
    bindings = build_bindings()
    engine = ReorderEngine(columns=4)

    engine.begin_drag(103, bindings)
    engine.drag_enter(100)
    updates = engine.drop()

    assert [update.metric_id for update in updates] == [103, 100, 101, 102, 104]
    assert [update.sort_order for update in updates] == [0, 1, 2, 3, 4]
    assert [str(update.grid_position) for update in updates] == ["0,0", "0,1", "0,2", "0,3", "1,0"]
    assert isinstance(engine.state, Committing)


def test_moving_down_lands_before_the_hovered_card():
    moved = move_before(build_bindings(), 100, 103)

    assert [binding.id for binding in moved] == [101, 102, 100, 103, 104]


@pytest.mark.parametrize("columns", [1, 3, 4, 6])
def test_positions_follow_list_index(columns):
    bindings = build_bindings(9)

    updates = compute_position_updates(bindings, columns)

    assert len({update.sort_order for update in updates}) == len(updates)
    for index, update in enumerate(updates):
        assert update.grid_position == GridPosition(row=index // columns, col=index % columns)


def test_commit_failure_restores_authoritative_order():
    bindings = build_bindings()
    engine = ReorderEngine()

    engine.begin_drag(104, bindings)
    engine.drag_enter(101)
    assert [binding.id for binding in engine.display_order(bindings)] == [100, 104, 101, 102, 103]

    engine.drop()
    engine.commit_failed()

    assert isinstance(engine.state, Idle)
    assert [binding.id for binding in engine.display_order(bindings)] == [100, 101, 102, 103, 104]


def test_illegal_transitions_are_rejected():
    bindings = build_bindings()
    engine = ReorderEngine()

    with pytest.raises(ReorderStateError):
        engine.drop()
    with pytest.raises(ReorderStateError):
        engine.drag_enter(100)

    engine.begin_drag(100, bindings)
    with pytest.raises(ReorderStateError):
        engine.begin_drag(101, bindings)

    engine.drop()
    with pytest.raises(ReorderStateError):
        engine.begin_drag(101, bindings)
    with pytest.raises(ReorderStateError):
        engine.cancel()

    engine.commit_succeeded()
    with pytest.raises(ReorderStateError):
        engine.commit_succeeded()


def test_cancel_discards_the_drag():
    bindings = build_bindings()
    engine = ReorderEngine()

    engine.begin_drag(102, bindings)
    engine.drag_enter(100)
    engine.cancel()

    assert engine.is_idle
    assert [binding.id for binding in engine.display_order(bindings)] == [100, 101, 102, 103, 104]


def test_hidden_or_unknown_cards_cannot_be_dragged():
    bindings = build_bindings(3) + [MetricBinding(id=200, name="hidden", is_visible=False, sort_order=1)]
    engine = ReorderEngine()

    with pytest.raises(ReorderStateError):
        engine.begin_drag(200, bindings)
    with pytest.raises(ReorderStateError):
        engine.begin_drag(999, bindings)
    assert isinstance(engine.state, Idle)


def test_disabled_engine_refuses_to_drag():
    engine = ReorderEngine(enabled=False)

    with pytest.raises(ReorderStateError):
        engine.begin_drag(100, build_bindings())


def test_drag_snapshot_excludes_hidden_bindings():
    bindings = build_bindings(3) + [MetricBinding(id=200, name="hidden", is_visible=False, sort_order=0)]
    engine = ReorderEngine()

    state = engine.begin_drag(101, bindings)

    assert isinstance(state, Dragging)
    assert [binding.id for binding in state.snapshot] == [100, 101, 102]


def test_visible_sorted_keeps_tied_bindings_in_incoming_order():
    bindings = [
        MetricBinding(id=1, name="a", sort_order=2),
        MetricBinding(id=2, name="b", sort_order=1),
        MetricBinding(id=3, name="c", sort_order=1),
        MetricBinding(id=4, name="d", sort_order=0, is_visible=False),
    ]

    assert [binding.id for binding in visible_sorted(bindings)] == [2, 3, 1]


def test_grid_position_parse_rejects_malformed_values():
    assert GridPosition.parse("1,2") == GridPosition(row=1, col=2)
    assert GridPosition.parse("1;2") is None
    assert GridPosition.parse("-1,0") is None
    assert GridPosition.parse(None) is None
