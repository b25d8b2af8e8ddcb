"""Quality Gate Framework.

Strategies:
- SEQUENTIAL: dependency order, fail-fast at the first required failure;
  gates after it are reported BLOCKED
- PARALLEL: dependency layers, each layer gathered concurrently up to
  max_parallel_gates
- ADAPTIVE: the stage's subset from STAGE_GATE_MAPPING, then parallel

A gate whose dependency did not pass is BLOCKED without running. Results
are cached (LRU, bounded) by a SHA-256 digest of the gate definition,
checker and server versions and health, and the input bytes. Results that
fell back to the checker alone are never cached.

A required gate whose capability has no server and no fallback raises
CapabilityUnavailableError; with no MCP invoker configured (dry runs) every
capability is skipped and the checker scores alone.
"""

import asyncio
import hashlib
import logging
import warnings
from collections import OrderedDict
from typing import Dict, List, Optional

from config import settings, STAGE_GATE_MAPPING
from contracts import (
    ChainStage,
    GateReport,
    GateResult,
    GateStatus,
    GateStrategy,
    QualityGate,
)
from capabilities import MCPServerSelector
from errors import CatalogError, OptionalGateFailure
from .checkers import Checker, CheckResult, GateInput, default_checkers

logger = logging.getLogger(__name__)


class QualityGateFramework:
    """Runs quality gates against stage or agent output."""

    def __init__(
        self,
        gates: Dict[str, QualityGate],
        checkers: Optional[Dict[str, Checker]] = None,
        selector: Optional[MCPServerSelector] = None,
        max_parallel: Optional[int] = None,
        cache_enabled: Optional[bool] = None,
        cache_size: Optional[int] = None,
    ):
        self.gates = gates
        self.checkers = checkers if checkers is not None else default_checkers()
        self.selector = selector
        self.max_parallel = max_parallel or settings.max_parallel_gates
        self.cache_enabled = settings.gate_cache_enabled if cache_enabled is None else cache_enabled
        self.cache_size = cache_size or settings.gate_cache_max_entries
        self._cache: "OrderedDict[str, GateResult]" = OrderedDict()

    def register_checker(self, checker: Checker) -> None:
        self.checkers[checker.name] = checker

    def gates_for_stage(self, stage: ChainStage, strategy: GateStrategy) -> List[QualityGate]:
        """Gates to run for a stage, with `required` taken from the stage's lists."""
        if strategy == GateStrategy.ADAPTIVE:
            gate_ids = STAGE_GATE_MAPPING.get(stage.id.value, stage.all_gates)
        else:
            gate_ids = stage.all_gates
        selected = []
        for gate_id in gate_ids:
            gate = self.gates[gate_id]
            if gate_id in stage.required_gates:
                gate = gate.model_copy(update={"required": True})
            elif gate_id in stage.optional_gates:
                gate = gate.model_copy(update={"required": False})
            selected.append(gate)
        return selected

    async def run_stage_gates(
        self,
        stage: ChainStage,
        gate_input: GateInput,
        strategy: GateStrategy = GateStrategy.PARALLEL,
    ) -> GateReport:
        return await self.run_gates(self.gates_for_stage(stage, strategy), gate_input, strategy, stage.id.value)

    async def run_gates(
        self,
        gates: List[QualityGate],
        gate_input: GateInput,
        strategy: GateStrategy,
        stage: str = "",
    ) -> GateReport:
        ordered = self._topological(gates)
        if strategy == GateStrategy.SEQUENTIAL:
            results = await self._run_sequential(ordered, gate_input)
        else:
            results = await self._run_parallel(ordered, gate_input)
        by_id = {r.gate_id: r for r in results}
        report = GateReport(stage=stage, strategy=strategy, results=[by_id[g.id] for g in ordered])
        logger.info(
            "Gates for %s (%s): %s",
            stage or "output", strategy.value,
            ", ".join(f"{r.gate_id}={r.status.value}({r.score:.2f})" for r in report.results),
        )
        return report

    def _topological(self, gates: List[QualityGate]) -> List[QualityGate]:
        """Stable dependency order. Dependencies outside the set are ignored.

        Raises:
            CatalogError: On a dependency cycle.
        """
        by_id = {g.id: g for g in gates}
        ordered: List[QualityGate] = []
        placed = set()
        remaining = list(gates)
        while remaining:
            progress = False
            for gate in list(remaining):
                deps = [d for d in gate.depends_on if d in by_id]
                if all(d in placed for d in deps):
                    ordered.append(gate)
                    placed.add(gate.id)
                    remaining.remove(gate)
                    progress = True
            if not progress:
                raise CatalogError(f"Gate dependency cycle among: {[g.id for g in remaining]}")
        return ordered

    def _unmet(self, gate: QualityGate, done: Dict[str, GateResult]) -> List[str]:
        return [d for d in gate.depends_on if d in done and done[d].status != GateStatus.PASSED]

    def _blocked(self, gate: QualityGate, reason: str) -> GateResult:
        return GateResult(
            gate_id=gate.id,
            status=GateStatus.BLOCKED,
            score=0.0,
            threshold=gate.threshold,
            required=gate.required,
            findings=[reason],
        )

    async def _run_sequential(self, gates: List[QualityGate], gate_input: GateInput) -> List[GateResult]:
        done: Dict[str, GateResult] = {}
        stopped_by: Optional[str] = None
        for gate in gates:
            if stopped_by is not None:
                done[gate.id] = self._blocked(gate, f"Not run: fail-fast after required gate '{stopped_by}'")
                continue
            unmet = self._unmet(gate, done)
            if unmet:
                done[gate.id] = self._blocked(gate, f"Unmet dependencies: {', '.join(unmet)}")
            else:
                done[gate.id] = await self.run_gate(gate, gate_input)
            if done[gate.id].blocks_transition:
                stopped_by = gate.id
        return list(done.values())

    async def _run_parallel(self, gates: List[QualityGate], gate_input: GateInput) -> List[GateResult]:
        in_set = {g.id for g in gates}
        depth: Dict[str, int] = {}
        for gate in gates:
            deps = [d for d in gate.depends_on if d in in_set]
            depth[gate.id] = 1 + max((depth[d] for d in deps), default=-1)
        layers: Dict[int, List[QualityGate]] = {}
        for gate in gates:
            layers.setdefault(depth[gate.id], []).append(gate)

        semaphore = asyncio.Semaphore(self.max_parallel)
        done: Dict[str, GateResult] = {}

        async def bounded(gate: QualityGate) -> GateResult:
            async with semaphore:
                return await self.run_gate(gate, gate_input)

        for level in sorted(layers):
            runnable = []
            for gate in layers[level]:
                unmet = self._unmet(gate, done)
                if unmet:
                    done[gate.id] = self._blocked(gate, f"Unmet dependencies: {', '.join(unmet)}")
                else:
                    runnable.append(gate)
            results = await asyncio.gather(*(bounded(g) for g in runnable))
            for gate, result in zip(runnable, results):
                done[gate.id] = result
        return list(done.values())

    def _server_versions(self, gate: QualityGate) -> List[str]:
        if self.selector is None or not gate.required_capability_tags:
            return []
        return sorted(
            f"{s.id}={s.config.version}:{s.health.value}" for s in self.selector.registry.snapshot()
            if set(s.capability_tags) & set(gate.required_capability_tags)
        )

    def input_digest(self, gate: QualityGate, gate_input: GateInput) -> str:
        checker = self.checkers.get(gate.checker_name)
        digest = hashlib.sha256()
        for part in (
            gate.id,
            repr(gate.threshold),
            repr(gate.required),
            gate.tool_version,
            f"{gate.checker_name}:{checker.version if checker else '-'}",
            ",".join(self._server_versions(gate)),
        ):
            digest.update(part.encode("utf-8") + b"\x00")
        digest.update(gate_input.digest_material())
        return digest.hexdigest()

    def _remember(self, key: str, result: GateResult) -> None:
        self._cache[key] = result
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    async def run_gate(self, gate: QualityGate, gate_input: GateInput) -> GateResult:
        """Run one gate, bounded by its timeout; a timeout scores 0.

        Raises:
            CapabilityUnavailableError: If a required gate's capability has no
                server and no fallback.
        """
        key = self.input_digest(gate, gate_input)
        if self.cache_enabled and key in self._cache:
            logger.debug("Gate %s served from cache", gate.id)
            self._cache.move_to_end(key)
            return self._cache[key]

        try:
            score, breakdown, findings, degraded = await asyncio.wait_for(
                self._evaluate(gate, gate_input), timeout=gate.timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            score, breakdown, findings, degraded = 0.0, {}, [f"Timed out after {gate.timeout_ms} ms"], False

        if settings.meets_threshold(score, gate.threshold):
            status = GateStatus.PASSED
        elif gate.required:
            status = GateStatus.FAILED
        else:
            status = GateStatus.WARNING
            message = f"Optional gate {gate.id} scored {score:.2f} below {gate.threshold:.2f}"
            logger.warning(message)
            warnings.warn(message, OptionalGateFailure, stacklevel=2)

        result = GateResult(
            gate_id=gate.id,
            status=status,
            score=score,
            threshold=gate.threshold,
            required=gate.required,
            breakdown=breakdown,
            findings=findings,
            input_digest=key,
            confidence_reduced=degraded,
        )
        # Degraded results depend on server availability, not only on the input
        if self.cache_enabled and not degraded:
            self._remember(key, result)
        return result

    @property
    def mcp_enabled(self) -> bool:
        return self.selector is not None and self.selector.invoker is not None

    async def _evaluate(self, gate: QualityGate, gate_input: GateInput):
        """Checker score, averaged with each structured MCP score the gate declares."""
        checker = self.checkers.get(gate.checker_name)
        if checker is None:
            raise CatalogError(f"No checker registered for gate '{gate.id}' ({gate.checker_name})")
        try:
            checked = await checker.check(gate_input, gate)
        except Exception as e:
            logger.warning("Checker %s raised: %s", checker.name, e)
            checked = CheckResult(0.0, [f"Checker error: {e}"])

        breakdown = {checker.name: checked.score}
        findings = list(checked.findings)
        degraded = False
        for tag in gate.required_capability_tags:
            if not self.mcp_enabled:
                findings.append(f"Capability {tag} not configured; scored by checker only")
                degraded = True
                continue
            response = await self.selector.call_with_fallback(
                tag, {"content": gate_input.content, "gate": gate.id},
                holder_id=f"gate:{gate.id}", required=gate.required,
            )
            server_score = response.structured_score() if response.server_id else None
            if server_score is None:
                findings.append(f"Capability {tag} unavailable ({response.source}); scored by checker only")
                degraded = True
                continue
            breakdown[f"{tag}@{response.server_id}"] = server_score
            if isinstance(response.result, dict):
                findings.extend(str(f) for f in response.result.get("findings", []) or [])

        score = round(sum(breakdown.values()) / len(breakdown), 10)
        return score, breakdown, findings, degraded
