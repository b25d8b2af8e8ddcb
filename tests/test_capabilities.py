"""Tests for MCP server selection, leasing, health and fallbacks."""

import asyncio

import pytest

from capabilities import (
    HealthMonitor,
    MCPServerSelector,
    ServerRegistry,
    apply_fallback,
    fallback_for,
)
from contracts import AgentType, HealthStatus
from errors import CapabilityUnavailableError, NoAvailableServerError

from conftest import FakeInvoker, make_server


def docs_registry(**kwargs):
    return ServerRegistry([
        make_server("docs-a", "documentation", priority=10),
        make_server("docs-b", "documentation", priority=20),
    ], **kwargs)


class TestServerRegistry:
    """Leases and health are the registry's only mutations."""

    async def test_lease_cap(self):
        registry = ServerRegistry([make_server("s1", "reasoning", leases=1)])
        first = await registry.grant_lease("s1", "reasoning", "agent-1")
        second = await registry.grant_lease("s1", "reasoning", "agent-2")
        assert first is not None
        assert second is None
        assert registry.get("s1").active_leases == 1

    async def test_double_release_is_noop(self):
        registry = ServerRegistry([make_server("s1", "reasoning")])
        lease = await registry.grant_lease("s1", "reasoning", "agent-1")
        assert await registry.release_lease(lease, 10.0, True)
        assert not await registry.release_lease(lease, 10.0, True)
        descriptor = registry.get("s1")
        assert descriptor.active_leases == 0
        assert descriptor.metrics.samples == 1

    async def test_rolling_metrics(self):
        registry = ServerRegistry([make_server("s1", "reasoning")], metrics_window=2)
        for latency, ok in [(100.0, False), (10.0, True), (30.0, True)]:
            lease = await registry.grant_lease("s1", "reasoning", "h")
            await registry.release_lease(lease, latency, ok)
        metrics = registry.get("s1").metrics
        assert metrics.samples == 2
        assert metrics.mean_latency_ms == 20.0
        assert metrics.success_rate == 1.0

    async def test_release_holder(self):
        registry = ServerRegistry([make_server("s1", "reasoning"), make_server("s2", "reasoning")])
        await registry.grant_lease("s1", "reasoning", "agent-1")
        await registry.grant_lease("s2", "reasoning", "agent-1")
        await registry.grant_lease("s2", "reasoning", "agent-2")
        assert await registry.release_holder("agent-1") == 2
        assert [l.holder_id for l in registry.active_leases()] == ["agent-2"]

    async def test_health_transitions(self):
        registry = ServerRegistry([make_server("s1", "reasoning")], unhealthy_after=3)
        assert await registry.record_health("s1", False) == HealthStatus.DEGRADED
        assert await registry.record_health("s1", False) == HealthStatus.DEGRADED
        assert await registry.record_health("s1", False) == HealthStatus.UNHEALTHY
        assert await registry.record_health("s1", True) == HealthStatus.HEALTHY

    async def test_concurrent_leases_never_exceed_cap(self):
        registry = ServerRegistry([make_server("s1", "reasoning", leases=3)])
        leases = await asyncio.gather(*(registry.grant_lease("s1", "reasoning", f"h{i}") for i in range(10)))
        assert sum(1 for lease in leases if lease is not None) == 3

    def test_snapshot_is_a_copy(self):
        registry = ServerRegistry([make_server("s1", "reasoning")])
        snapshot = registry.snapshot()[0]
        snapshot.active_leases = 99
        assert registry.get("s1").active_leases == 0


class TestSelection:
    """Affinity, priority, metrics and round robin."""

    def test_priority_order(self):
        selector = MCPServerSelector(docs_registry(), affinity={})
        assert selector.select("documentation").id == "docs-a"

    def test_affinity_beats_priority(self):
        selector = MCPServerSelector(docs_registry(), affinity={"scribe": ["docs-b"]})
        assert selector.select("documentation", AgentType.SCRIBE).id == "docs-b"
        assert selector.select("documentation", AgentType.BACKEND).id == "docs-a"

    def test_round_robin_within_top_tier(self):
        registry = ServerRegistry([
            make_server("r1", "reasoning", priority=10),
            make_server("r2", "reasoning", priority=10),
            make_server("r3", "reasoning", priority=50),
        ])
        selector = MCPServerSelector(registry, affinity={})
        picks = [selector.select("reasoning").id for _ in range(4)]
        assert picks == ["r1", "r2", "r1", "r2"]

    def test_unknown_capability(self):
        selector = MCPServerSelector(docs_registry(), affinity={})
        with pytest.raises(NoAvailableServerError):
            selector.select("ui_generation")

    async def test_poor_metrics_tried_last(self):
        registry = docs_registry()
        selector = MCPServerSelector(registry, affinity={}, min_success_rate=0.8)
        for _ in range(3):
            lease = await registry.grant_lease("docs-a", "documentation", "h")
            await registry.release_lease(lease, 10.0, False)
        assert [s.id for s in selector.candidates("documentation")] == ["docs-b", "docs-a"]
        assert selector.select("documentation").id == "docs-b"

    async def test_failed_server_recovers_through_new_samples(self):
        registry = ServerRegistry([make_server("docs-a", "documentation")], metrics_window=4)
        invoker = FakeInvoker(results={"docs-a": "fail"})
        selector = MCPServerSelector(registry, invoker=invoker, affinity={})
        with pytest.raises(NoAvailableServerError):
            await selector.call("documentation", {"query": "x"}, "agent-1")
        assert registry.get("docs-a").metrics.success_rate == 0.0

        invoker.results["docs-a"] = {"answer": 1}
        monitor = HealthMonitor(registry, invoker)
        for _ in range(2):
            await monitor.check_all()
        assert selector.select("documentation").id == "docs-a"

        for _ in range(3):
            response = await selector.call("documentation", {"query": "x"}, "agent-1")
            assert response.server_id == "docs-a"
        metrics = registry.get("docs-a").metrics
        assert metrics.success_rate == 0.75
        assert selector._metrics_ok(registry.get("docs-a")) is False
        await selector.call("documentation", {"query": "x"}, "agent-1")
        assert registry.get("docs-a").metrics.success_rate == 1.0

    async def test_full_server_routes_to_next(self):
        registry = ServerRegistry([
            make_server("r1", "reasoning", priority=10, leases=1),
            make_server("r2", "reasoning", priority=20, leases=1),
        ])
        selector = MCPServerSelector(registry, affinity={})
        first = await selector.acquire("reasoning", "agent-1")
        second = await selector.acquire("reasoning", "agent-2")
        assert (first.server_id, second.server_id) == ("r1", "r2")
        with pytest.raises(NoAvailableServerError):
            await selector.acquire("reasoning", "agent-3")

    async def test_lease_context_manager_releases(self):
        registry = docs_registry()
        selector = MCPServerSelector(registry, affinity={})
        with pytest.raises(RuntimeError):
            async with selector.lease("documentation", "agent-1") as lease:
                assert registry.get(lease.server_id).active_leases == 1
                raise RuntimeError("call failed")
        assert registry.get("docs-a").active_leases == 0
        assert registry.get("docs-a").metrics.success_rate == 0.0


class TestCalls:
    """Invocation, failover and fallbacks."""

    async def test_call_fails_over_to_next_server(self):
        registry = docs_registry()
        invoker = FakeInvoker(results={"docs-a": "fail", "docs-b": {"answer": 42}})
        selector = MCPServerSelector(registry, invoker=invoker, affinity={})
        response = await selector.call("documentation", {"query": "react"}, "agent-1")
        assert response.server_id == "docs-b"
        assert response.result == {"answer": 42}
        assert invoker.calls == ["docs-a", "docs-b"]
        assert registry.get("docs-a").metrics.success_rate == 0.0
        assert registry.active_leases() == []

    async def test_call_timeout_counts_as_failure(self):
        registry = ServerRegistry([make_server("slow", "reasoning")])
        selector = MCPServerSelector(registry, invoker=FakeInvoker(delay=1.0), affinity={}, call_timeout_seconds=0.05)
        with pytest.raises(NoAvailableServerError):
            await selector.call("reasoning", {}, "agent-1")
        assert registry.get("slow").metrics.success_rate == 0.0

    async def test_documentation_falls_back_to_search(self):
        selector = MCPServerSelector(ServerRegistry([]), invoker=FakeInvoker(), affinity={})
        response = await selector.call_with_fallback("documentation", {"query": "react hooks"}, "agent-1")
        assert response.fallback == "search_lookup"
        assert response.confidence_reduced
        assert response.result["query"] == "react hooks"

    async def test_reasoning_falls_back_to_single_pass(self):
        selector = MCPServerSelector(ServerRegistry([]), affinity={})
        response = await selector.call_with_fallback("reasoning", {"task": "design"}, "agent-1")
        assert response.fallback == "single_pass_analysis"

    async def test_required_capability_without_fallback_raises(self):
        selector = MCPServerSelector(ServerRegistry([]), invoker=FakeInvoker(), affinity={})
        with pytest.raises(CapabilityUnavailableError) as exc_info:
            await selector.call_with_fallback("security_scan", {}, "agent-1", required=True)
        assert exc_info.value.capability_tag == "security_scan"

    async def test_optional_capability_without_fallback_omitted(self):
        selector = MCPServerSelector(ServerRegistry([]), invoker=FakeInvoker(), affinity={})
        response = await selector.call_with_fallback("ui_generation", {}, "agent-1")
        assert not response.success
        assert response.fallback == "omitted"
        assert response.result is None

    def test_fallback_table(self):
        assert fallback_for("documentation") == "search_lookup"
        assert fallback_for("reasoning") == "single_pass_analysis"
        assert fallback_for("ui_generation") is None
        assert apply_fallback("ui_generation", {}) is None


class TestScenarioServerDegradation:
    """A server failing health checks is excluded; fallbacks take over."""

    async def test_unhealthy_server_excluded_then_fallback(self):
        registry = docs_registry(unhealthy_after=3)
        invoker = FakeInvoker(health={"docs-a": False})
        monitor = HealthMonitor(registry, invoker)
        selector = MCPServerSelector(registry, invoker=invoker, affinity={})

        for _ in range(3):
            await monitor.check_all()
        assert registry.get("docs-a").health == HealthStatus.UNHEALTHY
        assert registry.get("docs-b").health == HealthStatus.HEALTHY
        assert selector.select("documentation").id == "docs-b"

        response = await selector.call("documentation", {"query": "x"}, "agent-1")
        assert response.server_id == "docs-b"

        invoker.health["docs-b"] = False
        for _ in range(3):
            await monitor.check_all()
        with pytest.raises(NoAvailableServerError):
            selector.select("documentation")

        degraded = await selector.call_with_fallback("documentation", {"query": "x"}, "agent-1")
        assert degraded.confidence_reduced
        assert degraded.source == "search_lookup"

    async def test_monitor_start_stop(self):
        registry = ServerRegistry([make_server("s1", "reasoning")])
        monitor = HealthMonitor(registry, FakeInvoker(health={"s1": False}))
        monitor.start()
        await asyncio.sleep(0.01)
        await monitor.stop()
        assert registry.get("s1").health == HealthStatus.DEGRADED
