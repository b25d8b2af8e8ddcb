"""Quality gates: scheduling framework and built-in checkers."""

from .checkers import (
    Checker,
    CheckResult,
    GateInput,
    CompletenessChecker,
    StructureChecker,
    SecurityChecker,
    ConsistencyChecker,
    TestabilityChecker,
    default_checkers,
)
from .critic import CriticChecker
from .framework import QualityGateFramework

__all__ = [
    "QualityGateFramework",
    "Checker",
    "CheckResult",
    "GateInput",
    "CompletenessChecker",
    "StructureChecker",
    "SecurityChecker",
    "ConsistencyChecker",
    "TestabilityChecker",
    "CriticChecker",
    "default_checkers",
]
