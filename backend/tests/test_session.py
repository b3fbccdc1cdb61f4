from __future__ import annotations

import asyncio

import pytest

from conftest import InMemoryMentionSource
from entitynet.core.config import LayoutSettings
from entitynet.models.graph import EntityType, LayoutPhase
from entitynet.models.session import FilterOptions
from entitynet.services.graph import NodeNotFoundError
from entitynet.services.interaction import InteractionState
from entitynet.services.session import (
    GraphSession,
    OriginalStateMissingError,
    SessionNotFoundError,
    SessionStore,
    create_session,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _session(graph, **kwargs) -> GraphSession:
    kwargs.setdefault("layout_params", LayoutSettings(max_steps=25))
    return GraphSession(graph, **kwargs)


def _rendered_positions(session: GraphSession) -> dict:
    return {node.data.id: (node.data.x, node.data.y) for node in session.render().nodes}


def test_dragged_node_survives_filter_round_trip(scenario_a_graph) -> None:
    session = _session(scenario_a_graph)
    session.settle()

    session.drag("X", "start")
    session.drag("X", "move", 4.0, 4.0)
    session.drag("X", "end", 10.0, 20.0)
    session.apply_filters(FilterOptions(min_connections=2))
    assert _rendered_positions(session) == {"X": (10.0, 20.0)}

    session.apply_filters(FilterOptions())
    assert _rendered_positions(session)["X"] == (10.0, 20.0)


def test_visible_nodes_never_jump_across_filter_changes(newsroom_graph) -> None:
    session = _session(newsroom_graph)
    session.settle()
    filter_sequence = [
        FilterOptions(allowed_types={EntityType.PERSON, EntityType.LOCATION}),
        FilterOptions(min_connections=3),
        FilterOptions(search_text="a"),
        FilterOptions(explicit_selection={"Carla Diaz"}),
        FilterOptions(),
    ]

    for filters in filter_sequence:
        before = _rendered_positions(session)
        session.apply_filters(filters)
        session.settle()
        after = _rendered_positions(session)
        for node_id in set(before) & set(after):
            assert after[node_id] == before[node_id]


def test_hidden_nodes_return_to_their_last_position(newsroom_graph) -> None:
    session = _session(newsroom_graph)
    session.settle()
    original = _rendered_positions(session)

    session.apply_filters(FilterOptions(search_text="Paris"))
    session.apply_filters(FilterOptions())

    assert _rendered_positions(session) == original


def test_first_settle_of_full_graph_is_original(newsroom_graph) -> None:
    session = _session(newsroom_graph)
    assert not session.state_cache.has_original

    session.settle()

    assert session.state_cache.has_original
    assert set(session.state_cache.original().positions) == set(session.visible.node_ids)


def test_filtered_first_settle_is_not_original(newsroom_graph) -> None:
    session = _session(newsroom_graph, filters=FilterOptions(min_connections=3))
    session.settle()

    assert not session.state_cache.has_original
    with pytest.raises(OriginalStateMissingError):
        session.restore_original()


def test_restore_original_returns_to_unfiltered_layout(newsroom_graph) -> None:
    session = _session(newsroom_graph)
    session.settle()
    original = _rendered_positions(session)
    session.interaction.zoom_in()

    session.drag("Paris", "end", -50.0, -50.0)
    session.apply_filters(FilterOptions(search_text="o"))
    session.restore_original()

    assert session.filters.is_identity
    assert _rendered_positions(session) == original
    assert session.interaction.transform.k == 1.0


def test_reset_layout_clears_cache_and_relaxes(newsroom_graph) -> None:
    session = _session(newsroom_graph)
    session.settle()
    session.drag("Paris", "end", -50.0, -50.0)

    session.reset_layout()

    assert session.engine.phase == LayoutPhase.RELAXING
    assert session.state_cache.cached_count == 0
    assert session.state_cache.has_original
    session.settle()
    assert session.state_cache.cached_count == len(session.visible.node_ids)


def test_step_saves_when_layout_settles(newsroom_graph) -> None:
    session = _session(newsroom_graph, layout_params=LayoutSettings(max_steps=5, energy_threshold=0.0))
    saves = session.state_cache.save_count

    assert session.step(2) is False
    assert session.state_cache.save_count == saves
    assert session.step(10) is True
    assert session.state_cache.save_count == saves + 1


def test_step_takes_periodic_snapshots_while_relaxing(newsroom_graph) -> None:
    clock = FakeClock()
    session = _session(
        newsroom_graph,
        layout_params=LayoutSettings(max_steps=50, energy_threshold=0.0, alpha_min=0.0),
        snapshot_interval=2.5,
        clock=clock,
    )

    session.step()
    assert session.state_cache.save_count == 0
    clock.now = 3.0
    session.step()
    assert session.state_cache.save_count == 1
    assert not session.state_cache.has_original


def test_filter_changes_before_settling_keep_relaxing(newsroom_graph) -> None:
    session = _session(newsroom_graph)
    initial = dict(session.engine.positions)

    session.apply_filters(FilterOptions(min_connections=2))
    session.apply_filters(FilterOptions())

    assert session.engine.phase == LayoutPhase.RELAXING
    assert not session.state_cache.has_original
    session.settle()
    assert session.state_cache.has_original
    assert _rendered_positions(session) != initial
    assert session.state_cache.original().positions == session.engine.positions


def test_view_changes_after_settling_are_saved_on_the_timer(newsroom_graph) -> None:
    clock = FakeClock()
    session = _session(newsroom_graph, snapshot_interval=2.5, clock=clock)
    session.settle()
    saves = session.state_cache.save_count

    session.viewport("zoom_in")
    assert session.state_cache.save_count == saves
    clock.now = 3.0
    session.render()
    assert session.state_cache.save_count == saves + 1
    assert session.state_cache.restore().zoom == pytest.approx(1.5)

    session.viewport("pan", dx=40.0, dy=0.0)
    clock.now = 6.0
    session.step()
    assert session.state_cache.save_count == saves + 2
    assert session.state_cache.restore().center == pytest.approx(session.interaction.view_center())
    assert session.state_cache.original().zoom == 1.0


def test_drag_moves_are_saved_on_the_timer(scenario_a_graph) -> None:
    clock = FakeClock()
    session = _session(scenario_a_graph, snapshot_interval=2.5, clock=clock)
    session.settle()
    saves = session.state_cache.save_count

    session.drag("Y", "start")
    clock.now = 3.0
    session.drag("Y", "move", 30.0, 40.0)

    assert session.state_cache.save_count == saves + 1
    assert session.state_cache.restore().positions["Y"] == (30.0, 40.0)


def test_drag_release_triggers_save(scenario_a_graph) -> None:
    session = _session(scenario_a_graph)
    session.settle()
    saves = session.state_cache.save_count

    session.drag("Y", "start")
    session.drag("Y", "move", 1.0, 1.0)
    assert session.state_cache.save_count == saves
    session.drag("Y", "end")

    assert session.state_cache.save_count == saves + 1
    assert session.state_cache.restore().positions["Y"] == (1.0, 1.0)


def test_drag_move_without_coordinates_is_rejected(scenario_a_graph) -> None:
    session = _session(scenario_a_graph)
    with pytest.raises(ValueError):
        session.drag("X", "move")


def test_interacting_with_hidden_node_raises(scenario_a_graph) -> None:
    session = _session(scenario_a_graph, filters=FilterOptions(min_connections=2))

    with pytest.raises(NodeNotFoundError):
        session.click("Y")
    with pytest.raises(NodeNotFoundError):
        session.hover("Nobody")


def test_filter_change_drops_highlight_on_hidden_node(scenario_a_graph) -> None:
    session = _session(scenario_a_graph)
    session.click("Y")

    session.apply_filters(FilterOptions(min_connections=2))

    assert session.interaction.state == InteractionState.IDLE
    assert session.render().meta.focus_id is None


def test_render_reports_styles_and_meta(scenario_a_graph) -> None:
    session = _session(scenario_a_graph)
    session.settle()
    session.click("X")

    response = session.render()

    nodes = {node.data.id: node.data for node in response.nodes}
    assert nodes["X"].is_focus and nodes["X"].stroke_width == 4.0
    assert nodes["Y"].is_neighbor and nodes["Y"].show_label
    assert all(edge.data.highlighted for edge in response.edges)
    assert response.meta.node_count == 3
    assert response.meta.total_edge_count == 2
    assert response.meta.layout_phase == LayoutPhase.SETTLED
    assert response.meta.interaction_state == "highlighted"
    assert response.meta.has_original_state is True
    assert response.meta.filters["min_connections"] == 1


def test_viewport_actions(scenario_a_graph) -> None:
    session = _session(scenario_a_graph)

    session.viewport("zoom_in")
    assert session.interaction.transform.k == pytest.approx(1.5)
    session.viewport("set_zoom", zoom=9.0)
    assert session.interaction.transform.k == 4.0
    session.viewport("reset")
    session.viewport("pan", dx=5.0, dy=5.0)
    assert session.render().meta.pan.x == 5.0
    with pytest.raises(ValueError):
        session.viewport("set_zoom")


def test_empty_graph_session_is_valid() -> None:
    from entitynet.services.graph import EMPTY_GRAPH

    session = _session(EMPTY_GRAPH)

    response = session.render()
    assert response.nodes == []
    assert response.meta.layout_phase == LayoutPhase.SETTLED


def test_session_store_evicts_oldest(scenario_a_graph) -> None:
    store = SessionStore(max_sessions=2)
    first = store.add(_session(scenario_a_graph))
    second = store.add(_session(scenario_a_graph))
    third = store.add(_session(scenario_a_graph))

    assert store.ids() == [second.session_id, third.session_id]
    with pytest.raises(SessionNotFoundError):
        store.get(first.session_id)
    store.remove(second.session_id)
    assert len(store) == 1
    with pytest.raises(SessionNotFoundError):
        store.remove(second.session_id)


def test_create_session_loads_graph_and_registers() -> None:
    rows = [
        {"entity_name": "X", "entity_type": "PERSON", "feature_id": 1},
        {"entity_name": "Y", "entity_type": "LOCATION", "feature_id": 1},
    ]
    source = InMemoryMentionSource(rows)
    store = SessionStore(max_sessions=4)

    session = asyncio.run(create_session(store, fetch_page=source.fetch_page, batch_size=10))

    assert store.get(session.session_id) is session
    assert session.base_graph.node_count == 2
    assert session.connections("X").locations[0].entity_name == "Y"
    assert session.stats("Y").connection_count == 1
