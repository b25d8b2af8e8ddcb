"""Tests for the Agent Coordinator."""

import asyncio
import random

import pytest

from agents import AgentCoordinator
from contracts import AgentInstance, AgentState, AgentType, Domain, ProjectContext
from errors import AgentOwnershipError, CapabilityUnavailableError

from conftest import FakeExecutor, make_descriptor


CONTEXT = ProjectContext(root="/tmp/project", domain_scores={Domain.FRONTEND: 0.8})

AGENTS = [
    make_descriptor(AgentType.SCRIBE, Domain.DOCUMENTATION),
    make_descriptor(AgentType.FRONTEND, Domain.FRONTEND),
    make_descriptor(AgentType.BACKEND, Domain.BACKEND),
    make_descriptor(AgentType.SECURITY, Domain.SECURITY),
    make_descriptor(AgentType.ARCHITECT, Domain.ARCHITECTURE),
]


def coordinator_for(executor, **kwargs):
    kwargs.setdefault("instance_timeout", 5.0)
    kwargs.setdefault("cancel_grace", 0.1)
    return AgentCoordinator(executor, **kwargs)


class TestAggregationOrder:
    """Output order follows descriptor priority, not completion order."""

    async def test_order_stable_under_jitter(self):
        expected = ["architect", "security", "backend", "frontend", "scribe"]
        for seed in range(3):
            rng = random.Random(seed)
            delays = {d.agent_type: rng.uniform(0, 0.03) for d in AGENTS}
            coordinator = coordinator_for(FakeExecutor(delays=delays))
            instances = coordinator.spawn("run-1", AGENTS, "task", CONTEXT)
            result = await coordinator.await_results(instances)
            assert [o.agent_type.value for o in result.outputs] == expected

    async def test_reverse_completion_order(self):
        delays = {AgentType.ARCHITECT: 0.05, AgentType.SCRIBE: 0.0}
        coordinator = coordinator_for(FakeExecutor(delays=delays))
        instances = coordinator.spawn("run-1", [AGENTS[0], AGENTS[4]], "task", CONTEXT)
        result = await coordinator.await_results(instances)
        assert [o.agent_type for o in result.outputs] == [AgentType.ARCHITECT, AgentType.SCRIBE]

    async def test_no_instances(self):
        coordinator = coordinator_for(FakeExecutor())
        result = await coordinator.await_results([])
        assert result.outputs == []


class TestRetriesAndFailures:
    """One retry per instance, then a partial coordination failure."""

    async def test_retry_then_success(self):
        executor = FakeExecutor(behaviours={AgentType.BACKEND: [RuntimeError("boom"), "## API\n\nREST endpoints"]})
        coordinator = coordinator_for(executor)
        instances = coordinator.spawn("run-1", [AGENTS[2]], "task", CONTEXT)
        result = await coordinator.await_results(instances)
        assert [o.agent_type for o in result.outputs] == [AgentType.BACKEND]
        assert instances[0].attempts == 2
        assert instances[0].state == AgentState.COMPLETED
        assert not result.partial_coordination_failure

    async def test_second_failure_drops_domain(self):
        executor = FakeExecutor(behaviours={AgentType.BACKEND: [RuntimeError("boom"), RuntimeError("again")]})
        coordinator = coordinator_for(executor)
        instances = coordinator.spawn("run-1", [AGENTS[2], AGENTS[1]], "task", CONTEXT)
        result = await coordinator.await_results(instances)
        assert [o.agent_type for o in result.outputs] == [AgentType.FRONTEND]
        assert result.partial_coordination_failure
        failure = result.failures[0]
        assert failure.agent_type == AgentType.BACKEND
        assert failure.attempts == 2
        assert "again" in failure.reason

    async def test_instance_timeout_retried(self):
        executor = FakeExecutor(behaviours={AgentType.BACKEND: [1.0, "## API\n\nok"]})
        coordinator = coordinator_for(executor, instance_timeout=0.05)
        instances = coordinator.spawn("run-1", [AGENTS[2]], "task", CONTEXT)
        result = await coordinator.await_results(instances, timeout=2.0)
        assert [o.agent_type for o in result.outputs] == [AgentType.BACKEND]
        assert instances[0].attempts == 2

    async def test_straggler_marked_failed(self):
        executor = FakeExecutor(delays={AgentType.SCRIBE: 1.0})
        coordinator = coordinator_for(executor)
        instances = coordinator.spawn("run-1", [AGENTS[0], AGENTS[2]], "task", CONTEXT)
        result = await coordinator.await_results(instances, timeout=0.1)
        assert [o.agent_type for o in result.outputs] == [AgentType.BACKEND]
        assert result.failures[0].agent_type == AgentType.SCRIBE
        assert instances[0].state == AgentState.FAILED

    async def test_capability_unavailable_is_fatal(self):
        executor = FakeExecutor(behaviours={AgentType.SECURITY: [CapabilityUnavailableError("security_scan")]})
        coordinator = coordinator_for(executor)
        instances = coordinator.spawn("run-1", [AGENTS[3]], "task", CONTEXT)
        with pytest.raises(CapabilityUnavailableError):
            await coordinator.await_results(instances)
        assert executor.calls == [AgentType.SECURITY]

    async def test_concurrency_bounded(self):
        active = 0
        peak = 0

        class CountingExecutor(FakeExecutor):
            async def run(self, instance):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.02)
                active -= 1
                return await super().run(instance)

        coordinator = coordinator_for(CountingExecutor(), max_concurrent=2)
        instances = coordinator.spawn("run-1", AGENTS, "task", CONTEXT)
        result = await coordinator.await_results(instances)
        assert len(result.outputs) == 5
        assert peak == 2


class TestConflicts:
    """Overlapping regions go to the higher-priority agent."""

    async def test_region_conflict_resolved_by_priority(self):
        executor = FakeExecutor(behaviours={
            AgentType.ARCHITECT: ["## Overview\n\nLayered design.\n\n## Components\n\nThree services."],
            AgentType.FRONTEND: ["## Overview\n\nSingle page app.\n\n## Screens\n\nDashboard."],
        })
        coordinator = coordinator_for(executor)
        instances = coordinator.spawn("run-1", [AGENTS[1], AGENTS[4]], "task", CONTEXT)
        result = await coordinator.await_results(instances)

        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.region == "overview"
        assert conflict.winner == AgentType.ARCHITECT
        assert conflict.loser == AgentType.FRONTEND
        assert "Single page app." in conflict.secondary_suggestion

        frontend = result.outputs[1]
        assert "Single page app." not in frontend.content
        assert frontend.regions == ["screens"]
        assert "Layered design." in result.outputs[0].content


class TestOwnershipAndCancellation:
    async def test_assign_to_second_run_rejected(self):
        coordinator = coordinator_for(FakeExecutor(delays={AgentType.BACKEND: 0.05}))
        instances = coordinator.spawn("run-1", [AGENTS[2]], "task", CONTEXT)
        with pytest.raises(AgentOwnershipError):
            coordinator.assign(instances[0], "run-2")
        await coordinator.await_results(instances)

    def test_instance_created_for_other_run_rejected(self):
        coordinator = coordinator_for(FakeExecutor())
        instance = AgentInstance(run_id="run-1", descriptor=AGENTS[2], task="task", context=CONTEXT.subset_for())
        with pytest.raises(AgentOwnershipError):
            coordinator.assign(instance, "run-2")

    async def test_cancel_run(self):
        coordinator = coordinator_for(FakeExecutor(delays={d.agent_type: 5.0 for d in AGENTS}))
        instances = coordinator.spawn("run-1", AGENTS[:3], "task", CONTEXT)
        waiter = asyncio.create_task(coordinator.await_results(instances))
        await asyncio.sleep(0.01)
        assert len(coordinator.live_instances("run-1")) == 3

        cancelled = await coordinator.cancel_run("run-1")
        result = await asyncio.wait_for(waiter, timeout=1.0)

        assert len(cancelled) == 3
        assert all(i.state == AgentState.CANCELLED for i in instances)
        assert coordinator.live_instances("run-1") == []
        assert sorted(a.value for a in result.cancelled) == ["backend", "frontend", "scribe"]
        assert result.outputs == []

    async def test_cancel_leaves_other_runs_alone(self):
        coordinator = coordinator_for(FakeExecutor(delays={AgentType.BACKEND: 0.05}))
        other = coordinator.spawn("run-2", [AGENTS[2]], "task", CONTEXT)
        assert await coordinator.cancel_run("run-1") == []
        result = await coordinator.await_results(other)
        assert [o.agent_type for o in result.outputs] == [AgentType.BACKEND]


class TestRunChannels:
    """Result channels live only while a run has instances."""

    async def test_channel_dropped_after_last_batch(self):
        coordinator = coordinator_for(FakeExecutor(delays={AgentType.SCRIBE: 0.02}))
        first = coordinator.spawn("run-1", [AGENTS[2]], "task", CONTEXT)
        second = coordinator.spawn("run-1", [AGENTS[0]], "task", CONTEXT)

        await coordinator.await_results(first)
        assert "run-1" in coordinator._channels

        result = await coordinator.await_results(second)
        assert [o.agent_type for o in result.outputs] == [AgentType.SCRIBE]
        assert coordinator._channels == {}
        assert coordinator._stash == {}

    def test_empty_spawn_opens_no_channel(self):
        coordinator = coordinator_for(FakeExecutor())
        assert coordinator.spawn("run-1", [], "task", CONTEXT) == []
        assert coordinator._channels == {}
