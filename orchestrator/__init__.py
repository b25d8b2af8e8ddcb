"""Orchestrator module: stage controller, wave assessment and run export."""

from .chain_engine import PromptChainEngine
from .run_export import run_summary, save_run
from .wave_assessor import WaveModeAssessor

__all__ = [
    "PromptChainEngine",
    "WaveModeAssessor",
    "run_summary",
    "save_run",
]
