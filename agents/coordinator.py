"""Agent Coordinator: spawn, supervise and aggregate concurrent agent instances.

Each instance runs as one asyncio task that puts exactly one terminal
message on its run's result channel. await_results is the fan-in barrier
before gating. Aggregation follows fixed descriptor priority, never
completion order.
"""

import asyncio
import itertools
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Union

from config import settings
from contracts import (
    AgentDescriptor,
    AgentInstance,
    AgentOutput,
    AgentState,
    AgentType,
    AggregatedResult,
    ConflictRecord,
    PartialCoordinationFailure,
    ProjectContext,
)
from errors import AgentOwnershipError, AgentSpawnFailure, CapabilityUnavailableError
from scoring import priority_index
from .base_agent import ChainAgent, remove_section, section_text

logger = logging.getLogger(__name__)


@dataclass
class _TerminalMessage:
    """The single message an instance task emits when it reaches a terminal state."""
    instance_id: str
    state: AgentState
    output: Optional[AgentOutput] = None
    error: Optional[BaseException] = None


class AgentCoordinator:
    """Runs agent instances concurrently, bounded by a semaphore."""

    def __init__(
        self,
        executor: ChainAgent,
        max_concurrent: Optional[int] = None,
        instance_timeout: Optional[float] = None,
        cancel_grace: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        self.executor = executor
        self.max_concurrent = max_concurrent or settings.max_concurrent_agents
        self.instance_timeout = instance_timeout or settings.agent_timeout_seconds
        self.cancel_grace = settings.agent_cancel_grace_seconds if cancel_grace is None else cancel_grace
        self.max_retries = settings.agent_max_retries if max_retries is None else max_retries

        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._instances: Dict[str, AgentInstance] = {}
        self._owners: Dict[str, str] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._channels: Dict[str, asyncio.Queue] = {}
        self._stash: Dict[str, _TerminalMessage] = {}
        self._sequence: Dict[str, int] = {}
        self._counter = itertools.count()

    def assign(self, instance: AgentInstance, run_id: str) -> None:
        """Bind an instance to a run.

        Raises:
            AgentOwnershipError: If the instance already belongs to another run.
        """
        owner = self._owners.get(instance.instance_id)
        if owner is not None and owner != run_id:
            raise AgentOwnershipError(
                f"Instance {instance.instance_id} is owned by run {owner}, cannot assign to {run_id}"
            )
        if instance.run_id != run_id:
            raise AgentOwnershipError(
                f"Instance {instance.instance_id} was created for run {instance.run_id}, not {run_id}"
            )
        self._owners[instance.instance_id] = run_id
        self._instances[instance.instance_id] = instance

    def spawn(
        self,
        run_id: str,
        descriptors: List[AgentDescriptor],
        task: str,
        context: ProjectContext,
        notes: Optional[List[str]] = None,
    ) -> List[AgentInstance]:
        """Create one instance per descriptor and start its task.

        Must be called from a running event loop. Instances beyond
        max_concurrent queue on the semaphore.
        """
        if not descriptors:
            return []
        channel = self._channels.setdefault(run_id, asyncio.Queue())
        instances = []
        for descriptor in descriptors:
            instance = AgentInstance(
                run_id=run_id,
                descriptor=descriptor,
                task=task,
                context=context.subset_for(descriptor.domain, notes),
            )
            self.assign(instance, run_id)
            self._sequence[instance.instance_id] = next(self._counter)
            self._tasks[instance.instance_id] = asyncio.create_task(
                self._run_instance(instance, channel),
                name=f"agent-{descriptor.agent_type.value}-{instance.instance_id}",
            )
            instances.append(instance)
        logger.info(
            "Spawned %d agent(s) for run %s: %s",
            len(instances), run_id, ", ".join(d.agent_type.value for d in descriptors),
        )
        return instances

    async def _run_instance(self, instance: AgentInstance, channel: asyncio.Queue) -> None:
        """Run with one retry; always emits exactly one terminal message."""
        try:
            async with self._semaphore:
                instance.state = AgentState.RUNNING
                failure: Optional[AgentSpawnFailure] = None
                for attempt in range(1, self.max_retries + 2):
                    instance.attempts = attempt
                    try:
                        output = await asyncio.wait_for(self.executor.run(instance), timeout=self.instance_timeout)
                    except CapabilityUnavailableError as e:
                        self._finish(instance, AgentState.FAILED, str(e))
                        channel.put_nowait(_TerminalMessage(instance.instance_id, AgentState.FAILED, error=e))
                        return
                    except asyncio.TimeoutError:
                        failure = AgentSpawnFailure(
                            instance.agent_type.value, attempt, f"timed out after {self.instance_timeout}s"
                        )
                    except Exception as e:
                        failure = AgentSpawnFailure(instance.agent_type.value, attempt, str(e))
                    else:
                        self._finish(instance, AgentState.COMPLETED)
                        channel.put_nowait(_TerminalMessage(instance.instance_id, AgentState.COMPLETED, output=output))
                        return
                    logger.warning("%s", failure)
                    await self._release_leases(instance)

                self._finish(instance, AgentState.FAILED, failure.reason if failure else "unknown failure")
                channel.put_nowait(_TerminalMessage(instance.instance_id, AgentState.FAILED, error=failure))
        except asyncio.CancelledError:
            self._finish(instance, AgentState.CANCELLED, "cancelled")
            channel.put_nowait(_TerminalMessage(instance.instance_id, AgentState.CANCELLED))
            raise

    def _finish(self, instance: AgentInstance, state: AgentState, error: Optional[str] = None) -> None:
        if instance.state.is_terminal:
            return
        instance.state = state
        instance.error = error
        instance.finished_at = datetime.now()

    async def _release_leases(self, instance: AgentInstance) -> None:
        selector = getattr(self.executor, "selector", None)
        if selector is not None:
            await selector.release_holder(instance.instance_id)

    def _overall_timeout(self, count: int) -> float:
        batches = math.ceil(count / self.max_concurrent)
        return self.instance_timeout * (self.max_retries + 1) * batches + self.cancel_grace

    async def await_results(self, instances: List[AgentInstance], timeout: Optional[float] = None) -> AggregatedResult:
        """Barrier: wait for every instance to reach a terminal state, then aggregate.

        Instances still running at the overall timeout are cancelled and
        reported as failed.

        Raises:
            CapabilityUnavailableError: If an instance lost a required capability.
        """
        if not instances:
            return AggregatedResult()
        run_id = instances[0].run_id
        channel = self._channels.setdefault(run_id, asyncio.Queue())
        by_id = {i.instance_id: i for i in instances}
        pending = set(by_id)
        messages: Dict[str, _TerminalMessage] = {}
        for instance_id in list(pending):
            if instance_id in self._stash:
                messages[instance_id] = self._stash.pop(instance_id)
                pending.discard(instance_id)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout or self._overall_timeout(len(instances)))
        while pending:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                message = await asyncio.wait_for(channel.get(), timeout=remaining)
            except asyncio.TimeoutError:
                break
            if message.instance_id in pending:
                messages[message.instance_id] = message
                pending.discard(message.instance_id)
            elif message.instance_id in self._instances:
                self._stash[message.instance_id] = message

        for instance_id in pending:
            instance = by_id[instance_id]
            logger.warning("Agent %s (%s) is a straggler, marking failed", instance_id, instance.agent_type.value)
            task = self._tasks.get(instance_id)
            if task is not None:
                task.cancel()
            self._finish(instance, AgentState.FAILED, "straggler: overall timeout elapsed")
            await self._release_leases(instance)
            messages[instance_id] = _TerminalMessage(
                instance_id, AgentState.FAILED,
                error=AgentSpawnFailure(instance.agent_type.value, instance.attempts, "overall timeout elapsed"),
            )

        fatal = next(
            (m.error for m in messages.values() if isinstance(m.error, CapabilityUnavailableError)), None
        )
        result = self.aggregate(instances, messages)
        self._forget(instances)
        if fatal is not None:
            raise fatal
        return result

    def aggregate(self, instances: List[AgentInstance], messages: Dict[str, _TerminalMessage]) -> AggregatedResult:
        """Combine terminal messages in descriptor-priority order and resolve region conflicts."""
        ordered = sorted(
            instances,
            key=lambda i: (priority_index(i.agent_type.value), self._sequence.get(i.instance_id, 0)),
        )
        outputs: List[AgentOutput] = []
        failures: List[PartialCoordinationFailure] = []
        cancelled: List[AgentType] = []
        conflicts: List[ConflictRecord] = []
        claimed: Dict[str, AgentType] = {}

        for instance in ordered:
            message = messages.get(instance.instance_id)
            if message is None:
                continue
            if message.state == AgentState.CANCELLED:
                cancelled.append(instance.agent_type)
                continue
            if message.state == AgentState.FAILED or message.output is None:
                failures.append(PartialCoordinationFailure(
                    agent_type=instance.agent_type,
                    attempts=instance.attempts,
                    reason=str(message.error) if message.error else (instance.error or "failed"),
                ))
                continue

            output = message.output
            content = output.content
            kept_regions = []
            for region in output.regions:
                if region in claimed:
                    conflicts.append(ConflictRecord(
                        region=region,
                        winner=claimed[region],
                        loser=output.agent_type,
                        secondary_suggestion=section_text(content, region),
                    ))
                    content = remove_section(content, region)
                else:
                    claimed[region] = output.agent_type
                    kept_regions.append(region)
            outputs.append(output.model_copy(update={"content": content, "regions": kept_regions}))

        if failures:
            logger.warning(
                "Partial coordination failure: dropped %s", ", ".join(f.agent_type.value for f in failures),
            )
        if conflicts:
            logger.info("Resolved %d region conflict(s) by descriptor priority", len(conflicts))
        return AggregatedResult(outputs=outputs, conflicts=conflicts, failures=failures, cancelled=cancelled)

    def _forget(self, instances: List[AgentInstance]) -> None:
        """Instances are destroyed after aggregation.

        A run's result channel goes with its last instance.
        """
        run_ids = set()
        for instance in instances:
            run_ids.add(instance.run_id)
            self._tasks.pop(instance.instance_id, None)
            self._instances.pop(instance.instance_id, None)
            self._owners.pop(instance.instance_id, None)
            self._sequence.pop(instance.instance_id, None)
            self._stash.pop(instance.instance_id, None)
        still_owned = set(self._owners.values())
        for run_id in run_ids - still_owned:
            self._channels.pop(run_id, None)

    def live_instances(self, run_id: str) -> List[AgentInstance]:
        return [
            i for iid, i in self._instances.items()
            if self._owners.get(iid) == run_id and not i.state.is_terminal
        ]

    async def cancel_run(self, run_id: str) -> List[AgentInstance]:
        """Cancel every live instance of a run.

        Instances get cancel_grace seconds to acknowledge; any still running
        are then marked cancelled and abandoned. Their leases are released
        immediately.
        """
        live = self.live_instances(run_id)
        tasks = [self._tasks[i.instance_id] for i in live if i.instance_id in self._tasks]
        for task in tasks:
            task.cancel()
        for instance in live:
            await self._release_leases(instance)
        if tasks:
            done, still_running = await asyncio.wait(tasks, timeout=self.cancel_grace)
            if still_running:
                logger.warning("Force-terminating %d agent(s) of run %s after grace period", len(still_running), run_id)
                for task in still_running:
                    task.cancel()
        for instance in live:
            self._finish(instance, AgentState.CANCELLED, "run aborted")
        self._forget(live)
        self._channels.pop(run_id, None)
        if live:
            logger.info("Cancelled %d agent(s) of run %s", len(live), run_id)
        return live
