"""Prompt Chain Engine - the stage controller.

Drives one ChainRun through:

    idea_definition -> prd -> trd -> feature_breakdown -> user_story -> done

plus terminal ABORTED / FAILED. At every stage the engine:
1. Scores agents and spawns the AUTO_SPAWN ones (single pass or in waves)
2. Calls the inference provider for the stage content
3. Runs the stage's quality gates
4. Advances on all-required-pass, otherwise waits for a remediation input

Stage order is strictly forward; the only way back into a stage is the
same-stage remediation edge.
"""

import logging
import warnings
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional, Tuple
from uuid import uuid4

from config import settings
from contracts import (
    AggregatedResult,
    ChainRun,
    ChainStage,
    GateReport,
    GateStrategy,
    ProjectContext,
    RemediationRequest,
    RunStatus,
    ScoringResult,
    StageId,
    StageOutcome,
    StageOutput,
    TransitionRecord,
    UserPreferences,
    WaveCheckpoint,
    WaveDecision,
    WaveStrategy,
    STAGE_ORDER,
    domain_delta,
)
from agents import AgentCoordinator, ChainAgent
from analysis import ContextAnalyzer
from capabilities import HealthMonitor, MCPServerSelector, ServerRegistry, StdioCapabilityInvoker
from catalog import EngineCatalog, get_catalog
from errors import (
    ContextAnalysisError,
    InvalidTransitionError,
    RequiredGateFailure,
    WaveMiscalculationWarning,
    error_diagnostics,
)
from gates import CriticChecker, GateInput, QualityGateFramework, default_checkers
from providers import InferenceProvider, get_provider
from scoring import AgentScoringEngine
from .wave_assessor import WaveModeAssessor

logger = logging.getLogger(__name__)


class PromptChainEngine:
    """Stage controller for the five-stage prompt chain.

    Responsibilities:
    - Analyze project context and assess wave mode at run start
    - Spawn and aggregate agents per stage
    - Gate every stage output and enforce the forward-only state machine
    - Convert fatal errors into terminal run states with diagnostics
    """

    def __init__(
        self,
        catalog: Optional[EngineCatalog] = None,
        provider: Optional[InferenceProvider] = None,
        analyzer: Optional[ContextAnalyzer] = None,
        selector: Optional[MCPServerSelector] = None,
        coordinator: Optional[AgentCoordinator] = None,
        gates: Optional[QualityGateFramework] = None,
        scoring: Optional[AgentScoringEngine] = None,
        wave_assessor: Optional[WaveModeAssessor] = None,
        gate_strategy: Optional[GateStrategy] = None,
        model: Optional[str] = None,
        health_monitor: Optional[HealthMonitor] = None,
    ):
        """Initialize the engine.

        Args:
            catalog: Stage, agent, gate and server definitions (defaults to get_catalog())
            provider: Inference provider for stage and agent content
            analyzer: Context analyzer
            selector: MCP server selector (defaults to the catalog's servers over stdio)
            coordinator: Agent coordinator
            gates: Quality gate framework
            scoring: Agent scoring engine
            wave_assessor: Wave mode assessor
            gate_strategy: Force a gate strategy; None derives it from the wave decision
            model: Model override for inference calls
            health_monitor: Server health monitor active while a run executes
                (defaults to one over the selector's registry when it has an invoker)
        """
        self.catalog = catalog or get_catalog()
        self.model = model
        self.provider = provider or get_provider(model=model)
        self.analyzer = analyzer or ContextAnalyzer()
        self.selector = selector or MCPServerSelector(
            ServerRegistry(self.catalog.servers), invoker=StdioCapabilityInvoker(),
        )
        self.scoring = scoring or AgentScoringEngine(self.catalog.agents)
        self.coordinator = coordinator or AgentCoordinator(ChainAgent(self.provider, self.selector, model))
        if gates is None:
            checkers = default_checkers()
            checkers["critic"] = CriticChecker(self.provider, settings.critic_model or model)
            gates = QualityGateFramework(self.catalog.gates, checkers, self.selector)
        self.gates = gates
        self.wave_assessor = wave_assessor or WaveModeAssessor()
        self.gate_strategy = gate_strategy
        if (
            health_monitor is None
            and settings.mcp_health_checks_enabled
            and self.selector.invoker is not None
            and self.selector.registry.server_ids
        ):
            health_monitor = HealthMonitor(self.selector.registry, self.selector.invoker)
        self.health_monitor = health_monitor
        self._monitor_users = 0

        self._runs: Dict[str, ChainRun] = {}
        self._prefs: Dict[str, UserPreferences] = {}

    # --- run lifecycle -------------------------------------------------------

    def start_run(
        self,
        idea: str,
        project_root: Optional[str] = None,
        user_prefs: Optional[UserPreferences] = None,
    ) -> ChainRun:
        """Create a run: analyze context and assess wave mode once.

        A ContextAnalysisError does not escape; the run comes back ABORTED
        with diagnostics.
        """
        started = datetime.now()
        run = ChainRun(
            run_id=f"run_{started.strftime('%Y%m%d_%H%M%S')}_{uuid4().hex[:6]}",
            idea=idea,
            project_root=project_root,
            started_at=started,
        )
        run.history.append(TransitionRecord(to_stage=StageId.IDEA_DEFINITION, kind="start"))
        self._runs[run.run_id] = run
        self._prefs[run.run_id] = user_prefs or UserPreferences()

        if project_root is not None:
            try:
                run.context = self.analyzer.analyze(project_root)
            except ContextAnalysisError as e:
                logger.error("Run %s aborted: %s", run.run_id, e)
                self._terminate(run, RunStatus.ABORTED, error_diagnostics(e), "abort", str(e))
                return run

        run.wave_decision = self.wave_assessor.assess(run, self.catalog.stages)
        logger.info(
            "Run %s started (wave score %.3f, %s)",
            run.run_id, run.wave_decision.total, run.wave_decision.strategy.value,
        )
        return run

    def get_run(self, run_id: str) -> ChainRun:
        if run_id not in self._runs:
            raise KeyError(f"Run not found: {run_id}")
        return self._runs[run_id]

    async def advance(self, run: ChainRun) -> StageOutcome:
        """Produce, gate and (on success) accept the current stage.

        Raises:
            InvalidTransitionError: If the run is terminal or awaiting remediation.
        """
        if run.status == RunStatus.AWAITING_REMEDIATION:
            raise InvalidTransitionError(
                f"Run {run.run_id} is awaiting remediation of {run.current_stage.value}; call remediate()"
            )
        if run.status != RunStatus.IN_PROGRESS or run.current_stage is None:
            raise InvalidTransitionError(f"Run {run.run_id} is {run.status.value}; cannot advance")

        stage = self.catalog.get_stage(run.current_stage)
        self._check_inputs(run, stage)
        self._apply_pending_wave(run)

        try:
            output = await self._execute_stage(run, stage)
        except Exception as e:
            logger.error("Run %s failed in %s: %s", run.run_id, stage.id.value, e)
            await self.coordinator.cancel_run(run.run_id)
            self._terminate(run, RunStatus.FAILED, error_diagnostics(e), "fail", str(e))
            return self._outcome(run, stage.id)

        if run.status.is_terminal:
            # aborted while the stage was running
            return self._outcome(run, stage.id)
        return self._settle(run, stage, output)

    async def remediate(self, run: ChainRun, revised_content: str) -> StageOutcome:
        """Re-run only the gates of the blocked stage against revised content.

        Raises:
            InvalidTransitionError: If the run is not awaiting remediation.
        """
        if run.status != RunStatus.AWAITING_REMEDIATION or run.pending_output is None:
            raise InvalidTransitionError(f"Run {run.run_id} has no stage awaiting remediation")

        stage = self.catalog.get_stage(run.current_stage)
        self._transition(run, stage.id, "remediation", "revised content submitted")
        try:
            report = await self.gates.run_stage_gates(
                stage, GateInput(revised_content, stage, self._previous_content(run)), self._gate_strategy(run),
            )
        except Exception as e:
            logger.error("Run %s failed remediating %s: %s", run.run_id, stage.id.value, e)
            self._terminate(run, RunStatus.FAILED, error_diagnostics(e), "fail", str(e))
            return self._outcome(run, stage.id)
        output = run.pending_output.model_copy(
            update={"content": revised_content, "gate_report": report, "remediated": True}
        )
        run.status = RunStatus.IN_PROGRESS
        return self._settle(run, stage, output)

    def refresh_context(self, run: ChainRun, project_root: Optional[str] = None) -> Optional[WaveDecision]:
        """Re-derive the context; re-assess wave mode on a significant change.

        A re-assessment never changes the stage in flight: it is stored as
        pending_wave_decision and applied when the next stage starts. A root
        that can no longer be analyzed aborts the run.

        Returns:
            The new WaveDecision when a re-assessment happened, else None.
        """
        root = project_root or run.project_root
        if root is None:
            return None
        previous = run.context
        try:
            current = self.analyzer.rederive(previous, root) if previous else self.analyzer.analyze(root)
        except ContextAnalysisError as e:
            logger.error("Run %s aborted on context refresh: %s", run.run_id, e)
            self._terminate(run, RunStatus.ABORTED, error_diagnostics(e), "abort", str(e))
            return None
        run.context = current
        delta = domain_delta(previous, current) if previous else 1.0
        logger.info("Context for run %s re-derived (v%d, delta %.3f)", run.run_id, current.version, delta)
        if delta <= settings.context_change_threshold:
            return None

        decision = self.wave_assessor.assess(run, self.catalog.stages)
        in_effect = run.pending_wave_decision or run.wave_decision
        if in_effect is not None and not decision.same_mode_as(in_effect):
            message = (
                f"Wave decision for run {run.run_id} flipped from {in_effect.strategy.value} "
                f"to {decision.strategy.value}; applies from the next stage"
            )
            logger.warning(message)
            warnings.warn(message, WaveMiscalculationWarning, stacklevel=2)
        run.pending_wave_decision = decision
        return decision

    async def abort(self, run: ChainRun, reason: str = "aborted by caller") -> ChainRun:
        """Cancel live agents, release their leases and mark the run ABORTED."""
        if run.status.is_terminal:
            raise InvalidTransitionError(f"Run {run.run_id} is already {run.status.value}")
        cancelled = await self.coordinator.cancel_run(run.run_id)
        self._terminate(
            run, RunStatus.ABORTED,
            {"reason": reason, "cancelled_agents": [i.agent_type.value for i in cancelled]},
            "abort", reason,
        )
        logger.warning("Run %s aborted: %s", run.run_id, reason)
        return run

    @asynccontextmanager
    async def monitoring(self) -> AsyncIterator[None]:
        """Keep server health current while the block runs.

        Servers are checked once on entry, then at the monitor's interval.
        The monitor stops when the last concurrent user leaves.
        """
        monitor = self.health_monitor
        if monitor is None:
            yield
            return
        self._monitor_users += 1
        try:
            if not monitor.running:
                await monitor.check_all()
                monitor.start(check_first=False)
            yield
        finally:
            self._monitor_users -= 1
            if self._monitor_users == 0:
                await monitor.stop()

    async def run_to_completion(self, run: ChainRun) -> StageOutcome:
        """Advance until the run completes, needs remediation, or terminates."""
        outcome = self._outcome(run, run.current_stage)
        async with self.monitoring():
            while run.status == RunStatus.IN_PROGRESS:
                outcome = await self.advance(run)
        return outcome

    # --- stage execution -----------------------------------------------------

    async def _execute_stage(self, run: ChainRun, stage: ChainStage) -> StageOutput:
        prefs = self._prefs.get(run.run_id) or UserPreferences()
        scoring = self.scoring.score(stage, self._scoring_text(run), run.context, prefs)
        to_spawn = [self.catalog.get_agent(r.agent_type) for r in AgentScoringEngine.auto_spawned(scoring)]
        run.suggested_agents[stage.id.value] = [r.agent_type for r in AgentScoringEngine.suggested(scoring)]

        task = self._stage_prompt(run, stage)
        context = run.context or ProjectContext(root=run.project_root or "")
        decision = run.wave_decision
        strategy = self._gate_strategy(run)
        previous = self._previous_content(run)

        if decision is not None and decision.multi_wave:
            phases = self.wave_assessor.distribute(to_spawn, decision)
            aggregated = AggregatedResult()
            checkpoints: List[WaveCheckpoint] = []
            notes: List[str] = []
            content, model, report = "", None, None
            for phase in decision.waves:
                instances = self.coordinator.spawn(run.run_id, phases.get(phase, []), task, context, notes)
                wave_result = await self.coordinator.await_results(instances)
                if run.status.is_terminal:
                    break
                aggregated = self._merge(aggregated, wave_result)
                content, model = await self._generate(run, stage, aggregated)
                report = await self.gates.run_stage_gates(stage, GateInput(content, stage, previous), strategy)
                agents = [o.agent_type.value for o in wave_result.outputs]
                notes = notes + [
                    f"{phase.value} wave: {', '.join(agents) or 'no agents'}; "
                    f"gates {'passed' if report.passed else 'blocked by ' + ', '.join(r.gate_id for r in report.blocking)}"
                ]
                checkpoints.append(WaveCheckpoint(phase=phase, agents=agents, notes=list(notes), gate_report=report))
                logger.info("Run %s %s: %s wave checkpointed", run.run_id, stage.id.value, phase.value)
        else:
            instances = self.coordinator.spawn(run.run_id, to_spawn, task, context)
            aggregated = await self.coordinator.await_results(instances)
            checkpoints = []
            content, model, report = "", None, None
            if not run.status.is_terminal:
                content, model = await self._generate(run, stage, aggregated)
                report = await self.gates.run_stage_gates(stage, GateInput(content, stage, previous), strategy)

        # Only the final wave's report governs the transition
        return StageOutput(
            stage=stage.id,
            content=content,
            agent_contributions=aggregated,
            scoring=scoring,
            gate_report=report,
            wave_checkpoints=checkpoints,
            model=model,
        )

    async def _generate(self, run: ChainRun, stage: ChainStage, aggregated: AggregatedResult) -> Tuple[str, str]:
        snapshot_parts = []
        if run.context is not None:
            snapshot_parts.append(run.context.subset_for().summary())
        contributions = aggregated.combined_content()
        if contributions:
            snapshot_parts.append(f"Agent contributions:\n\n{contributions}")
        response = await self.provider.generate(
            self._stage_prompt(run, stage), "\n\n".join(snapshot_parts), model=self.model,
        )
        return response.content, response.model

    def _settle(self, run: ChainRun, stage: ChainStage, output: StageOutput) -> StageOutcome:
        report = output.gate_report or GateReport(stage=stage.id.value, strategy=self._gate_strategy(run))
        if report.passed:
            return self._accept(run, stage, output)

        failure = RequiredGateFailure(stage.id.value, [r.gate_id for r in report.blocking], report)
        logger.warning("Run %s: %s", run.run_id, failure)
        run.remediation = RemediationRequest(
            stage=stage.id,
            failed_gates=failure.failed_gates,
            findings={r.gate_id: list(r.findings) for r in report.blocking},
            pending_content=output.content,
            gate_report=report,
        )
        run.pending_output = output
        run.status = RunStatus.AWAITING_REMEDIATION
        self._transition(run, stage.id, "remediation_required", ", ".join(failure.failed_gates))
        return self._outcome(run, stage.id, output=output)

    def _accept(self, run: ChainRun, stage: ChainStage, output: StageOutput) -> StageOutcome:
        run.stages.append(output)
        run.remediation = None
        run.pending_output = None
        if stage.next_stage is None:
            self._terminate(run, RunStatus.COMPLETED, {}, "complete", f"{stage.id.value} accepted")
        else:
            self._transition(run, stage.next_stage, "advance")
            run.current_stage = stage.next_stage
            run.status = RunStatus.IN_PROGRESS
        logger.info("Run %s: %s accepted", run.run_id, stage.id.value)
        return self._outcome(run, stage.id, output=output, advanced=True)

    # --- state machine helpers -----------------------------------------------

    def _transition(self, run: ChainRun, to_stage: StageId, kind: str, note: str = "") -> None:
        """Record a transition; only the same stage or its direct successor is allowed.

        Raises:
            InvalidTransitionError: On any other target.
        """
        current = run.current_stage
        if current is None:
            raise InvalidTransitionError(f"Run {run.run_id} has no open stage")
        here = STAGE_ORDER.index(current)
        there = STAGE_ORDER.index(to_stage)
        if there not in (here, here + 1) or to_stage in run.completed_stages:
            raise InvalidTransitionError(
                f"Run {run.run_id}: {current.value} -> {to_stage.value} violates stage order"
            )
        run.history.append(TransitionRecord(from_stage=current, to_stage=to_stage, kind=kind, note=note))

    def _terminate(self, run: ChainRun, status: RunStatus, diagnostics: Dict, kind: str, note: str = "") -> None:
        run.history.append(TransitionRecord(from_stage=run.current_stage, kind=kind, note=note))
        run.status = status
        run.diagnostics.update(diagnostics)
        run.completed_at = datetime.now()
        if status == RunStatus.COMPLETED:
            run.current_stage = None

    def _check_inputs(self, run: ChainRun, stage: ChainStage) -> None:
        for required in stage.required_inputs:
            if required == "idea":
                if not run.idea.strip():
                    raise InvalidTransitionError(f"Stage {stage.id.value} requires a non-empty idea")
                continue
            if StageId(required) not in run.completed_stages:
                raise InvalidTransitionError(f"Stage {stage.id.value} requires output of {required}")

    def _apply_pending_wave(self, run: ChainRun) -> None:
        if run.pending_wave_decision is not None:
            logger.info(
                "Run %s: applying re-assessed wave decision (%s) at %s",
                run.run_id, run.pending_wave_decision.strategy.value, run.current_stage.value,
            )
            run.wave_decision = run.pending_wave_decision
            run.pending_wave_decision = None

    def _gate_strategy(self, run: ChainRun) -> GateStrategy:
        if self.gate_strategy is not None:
            return self.gate_strategy
        decision = run.wave_decision
        if decision is not None and decision.strategy == WaveStrategy.VALIDATION:
            return GateStrategy.SEQUENTIAL
        if decision is not None and decision.strategy == WaveStrategy.CONTEXT_DRIVEN:
            return GateStrategy.ADAPTIVE
        return GateStrategy.PARALLEL

    @staticmethod
    def _merge(first: AggregatedResult, second: AggregatedResult) -> AggregatedResult:
        return AggregatedResult(
            outputs=first.outputs + second.outputs,
            conflicts=first.conflicts + second.conflicts,
            failures=first.failures + second.failures,
            cancelled=first.cancelled + second.cancelled,
        )

    def _previous_content(self, run: ChainRun) -> str:
        return run.last_output.content if run.last_output else run.idea

    def _scoring_text(self, run: ChainRun) -> str:
        return f"{run.idea}\n\n{self._previous_content(run)}" if run.last_output else run.idea

    def _stage_prompt(self, run: ChainRun, stage: ChainStage) -> str:
        parts = [f"# Stage: {stage.title or stage.id.value}\n\n{stage.prompt}", f"# Idea\n\n{run.idea.strip()}"]
        if run.last_output is not None:
            parts.append(f"# Previous stage output ({run.last_output.stage.value})\n\n{run.last_output.content}")
        if stage.output_format:
            headings = "\n".join(f"## {h}" for h in stage.output_format)
            parts.append(f"# Output format\n\nUse exactly these section headings:\n\n{headings}")
        return "\n\n".join(parts)

    def _outcome(
        self,
        run: ChainRun,
        stage: Optional[StageId],
        output: Optional[StageOutput] = None,
        advanced: bool = False,
    ) -> StageOutcome:
        suggested = run.suggested_agents.get(stage.value, []) if stage else []
        return StageOutcome(
            run_id=run.run_id,
            stage=stage,
            status=run.status,
            advanced=advanced,
            output=output,
            remediation=run.remediation,
            suggested_agents=suggested,
            diagnostics=dict(run.diagnostics),
        )
