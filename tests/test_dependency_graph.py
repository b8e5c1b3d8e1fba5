"""Tests for the dependency graph module."""

import random

import pytest

from orchestrate.dependency_graph import (
    DependencyGraph,
    GraphResolver,
    effective_edges,
    resolve_graph,
)
from orchestrate.errors import CycleDetected, InvalidDependency
from orchestrate.models import DependencyEdge, DependencyType, ProfileScope, Service
from orchestrate.store import InMemoryConfigStore


def _edge(frm, to, **kwargs):
    return DependencyEdge(from_service=frm, to_service=to, **kwargs)


def _soft(frm, to):
    return _edge(frm, to, type=DependencyType.SOFT)


def _services(*ids, **orders):
    return [Service(id=sid, order=orders.get(sid, 0)) for sid in ids]


class TestTopologicalOrder:
    def test_single_node(self):
        plan = resolve_graph(_services("registry"), [])
        assert plan.order == ["registry"]

    def test_linear_chain(self):
        plan = resolve_graph(_services("a", "b", "c"), [_edge("b", "a"), _edge("c", "b")])
        assert plan.order == ["a", "b", "c"]

    def test_gateway_cache_registry_scenario(self):
        edges = [
            _edge("gateway", "registry"),
            _edge("gateway", "cache"),
            _edge("cache", "registry"),
        ]
        plan = resolve_graph(_services("gateway", "cache", "registry"), edges)
        assert plan.order == ["registry", "cache", "gateway"]
        assert plan.shutdown_order() == ["gateway", "cache", "registry"]

    def test_ties_broken_by_preferred_order_then_id(self):
        plan = resolve_graph(_services("zeta", "alpha", "mid", zeta=1, alpha=2), [])
        assert plan.order == ["mid", "zeta", "alpha"]

    def test_preferred_order_never_overrides_dependencies(self):
        plan = resolve_graph(
            _services("db", "api", db=10, api=0),
            [_edge("api", "db")],
        )
        assert plan.order == ["db", "api"]

    def test_empty_graph(self):
        assert resolve_graph([], []).order == []

    def test_every_enabled_service_listed_once(self):
        services = _services("a", "b", "c", "d")
        edges = [_edge("b", "a"), _edge("c", "a"), _edge("d", "b"), _edge("d", "c")]
        plan = resolve_graph(services, edges)
        assert sorted(plan.order) == ["a", "b", "c", "d"]
        assert len(plan.order) == 4

    def test_deterministic_under_edge_shuffle(self):
        services = _services("a", "b", "c", "d", "e", "f", b=2, e=1)
        edges = [
            _edge("b", "a"), _edge("c", "a"), _edge("d", "b"),
            _edge("d", "c"), _edge("e", "a"), _soft("f", "e"),
            _soft("a", "f"),
        ]
        expected = resolve_graph(services, edges).order
        rng = random.Random(7)
        for _ in range(25):
            shuffled = edges[:]
            rng.shuffle(shuffled)
            svc = services[:]
            rng.shuffle(svc)
            assert resolve_graph(svc, shuffled).order == expected


class TestDisabledServices:
    def test_disabled_service_excluded_with_its_edges(self):
        services = _services("a", "b", "c")
        services[1].enabled = False
        plan = resolve_graph(services, [_edge("b", "a"), _edge("c", "a")])
        assert plan.order == ["a", "c"]
        assert "b" not in plan.edges

    def test_edge_to_disabled_service_kept_for_engine(self):
        services = _services("a", "b")
        services[1].enabled = False
        plan = resolve_graph(services, [_edge("a", "b")])
        assert plan.order == ["a"]
        assert plan.edges_of("a")[0].to_service == "b"


class TestCycles:
    def test_hard_cycle_rejected_with_full_path(self):
        edges = [_edge("a", "b"), _edge("b", "c"), _edge("c", "a")]
        with pytest.raises(CycleDetected) as exc_info:
            resolve_graph(_services("a", "b", "c"), edges)
        path = exc_info.value.path
        assert path[0] == path[-1]
        assert set(path) == {"a", "b", "c"}
        assert exc_info.value.services == ["a", "b", "c"]

    def test_two_node_cycle_rejected(self):
        with pytest.raises(CycleDetected, match="Circular dependency"):
            resolve_graph(_services("a", "b"), [_edge("a", "b"), _edge("b", "a")])

    def test_soft_cycle_broken(self):
        edges = [_soft("a", "b"), _soft("b", "c"), _soft("c", "a")]
        plan = resolve_graph(_services("a", "b", "c"), edges)
        assert plan.order == ["c", "b", "a"]
        assert len(plan.dropped_edges) == 1
        assert plan.dropped_edges[0].from_service == "c"
        assert plan.warnings and "broken" in plan.warnings[0]

    def test_mixed_cycle_drops_only_soft_edge(self):
        edges = [_edge("a", "b"), _edge("b", "c"), _soft("c", "a")]
        plan = resolve_graph(_services("a", "b", "c"), edges)
        assert plan.order == ["c", "b", "a"]
        assert [(e.from_service, e.to_service) for e in plan.dropped_edges] == [("c", "a")]

    def test_lowest_priority_soft_edge_dropped(self):
        edges = [_soft("a", "b"), _soft("b", "a")]
        plan = resolve_graph(_services("a", "b", a=5, b=1), edges)
        # "a" has the higher preferred order, so its edge goes.
        assert plan.dropped_edges[0].from_service == "a"
        assert plan.order == ["a", "b"]

    def test_non_required_hard_edges_still_form_cycles(self):
        edges = [_edge("a", "b", required=False), _edge("b", "a")]
        with pytest.raises(CycleDetected):
            resolve_graph(_services("a", "b"), edges)


class TestEffectiveEdges:
    def test_profile_edges_replace_global_for_that_service(self):
        global_edges = [_edge("x", "y"), _edge("x", "w"), _edge("v", "y")]
        profile_edges = [_edge("x", "z")]
        effective = effective_edges(["x", "v"], global_edges, profile_edges)
        assert [e.to_service for e in effective["x"]] == ["z"]
        assert [e.to_service for e in effective["v"]] == ["y"]

    def test_profile_override_changes_order(self):
        services = _services("x", "y", "z", y=1, z=2)
        global_only = resolve_graph(services, [_edge("x", "y")])
        assert global_only.order == ["y", "x", "z"]

        with_profile = resolve_graph(services, [_edge("x", "y")], [_edge("x", "z")], profile_id="p")
        assert with_profile.order == ["y", "z", "x"]
        assert with_profile.profile_id == "p"


class TestGraphHelpers:
    def test_waves_group_parallel_services(self):
        g = DependencyGraph()
        for sid in ("root", "a", "b", "c", "d", "e"):
            g.add_service(Service(id=sid))
        g.nodes["a"].edges = [_edge("a", "root")]
        g.nodes["b"].edges = [_edge("b", "root")]
        g.nodes["c"].edges = [_edge("c", "a")]
        g.nodes["d"].edges = [_edge("d", "a"), _edge("d", "b")]
        g.nodes["e"].edges = [_edge("e", "c"), _edge("e", "d")]
        assert g.waves() == [["root"], ["a", "b"], ["c", "d"], ["e"]]

    def test_dependents_of_follows_blocking_edges_only(self):
        g = DependencyGraph()
        g.add_service(Service(id="a"))
        g.add_service(Service(id="b"), [_edge("b", "a")])
        g.add_service(Service(id="c"), [_edge("c", "b")])
        g.add_service(Service(id="d"), [_soft("d", "a")])
        g.add_service(Service(id="e"), [_edge("e", "a", required=False)])
        assert g.dependents_of(["a"]) == ["b", "c"]

    def test_missing_targets(self):
        g = DependencyGraph()
        g.add_service(Service(id="a"), [_edge("a", "ghost")])
        assert [e.to_service for e in g.missing_targets()] == ["ghost"]

    def test_duplicate_edge_rejected(self):
        g = DependencyGraph()
        with pytest.raises(InvalidDependency):
            g.add_service(Service(id="a"), [_edge("a", "b"), _edge("a", "b", type=DependencyType.SOFT)])


class TestGraphResolver:
    @pytest.mark.asyncio
    async def test_resolve_uses_store_scopes(self):
        store = InMemoryConfigStore()
        for sid, order in (("x", 0), ("y", 1), ("z", 2)):
            store.add_service(Service(id=sid, order=order))
        store.add_edge(_edge("x", "y"))
        store.add_edge(_edge("x", "z"), ProfileScope("dev"))

        resolver = GraphResolver(store)
        assert (await resolver.resolve()).order == ["y", "x", "z"]
        assert (await resolver.resolve("dev")).order == ["y", "z", "x"]

    @pytest.mark.asyncio
    async def test_resolve_restricts_to_enabled_services(self):
        store = InMemoryConfigStore()
        for sid in ("a", "b", "c"):
            store.add_service(Service(id=sid))
        store.add_edge(_edge("c", "b"))

        plan = await GraphResolver(store).resolve(None, enabled_services=["a", "c"])
        assert plan.order == ["a", "c"]

    @pytest.mark.asyncio
    async def test_resolve_honours_profile_membership(self):
        store = InMemoryConfigStore()
        for sid in ("a", "b", "c"):
            store.add_service(Service(id=sid))
        store.add_profile("small", ["a", "b"])

        plan = await GraphResolver(store).resolve("small")
        assert plan.order == ["a", "b"]

    @pytest.mark.asyncio
    async def test_store_edits_seen_on_next_resolve(self):
        store = InMemoryConfigStore()
        store.add_service(Service(id="a"))
        store.add_service(Service(id="b"))
        resolver = GraphResolver(store)
        assert (await resolver.resolve()).order == ["a", "b"]

        store.add_edge(_edge("a", "b"))
        assert (await resolver.resolve()).order == ["b", "a"]
