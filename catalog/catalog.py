"""Catalog of static engine configuration.

The Catalog provides the stage, agent, gate and MCP server definitions:
1. Built-in defaults (catalog.defaults) - always loaded
2. JSON overrides (optional) - stages.json / agents.json / gates.json /
   servers.json in a catalog directory; an entry with the same id replaces
   the built-in one, new ids are added
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from config import settings, STAGE_GATE_MAPPING
from contracts import (
    AgentDescriptor,
    AgentType,
    ChainStage,
    MCPServerConfig,
    QualityGate,
    StageId,
    STAGE_ORDER,
)
from errors import CatalogError
from .defaults import DEFAULT_AGENTS, DEFAULT_GATES, DEFAULT_SERVERS, DEFAULT_STAGES

logger = logging.getLogger(__name__)


CATALOG_FILES = {
    "stages": "stages.json",
    "agents": "agents.json",
    "gates": "gates.json",
    "servers": "servers.json",
}


def _entry_key(section: str, entry: Dict[str, Any]) -> str:
    return str(entry.get("agent_type") if section == "agents" else entry.get("id"))


class EngineCatalog:
    """Loads and validates stage, agent, gate and server definitions."""

    def __init__(self, catalog_dir: Optional[str] = None):
        """Initialize the catalog.

        Args:
            catalog_dir: Directory with JSON overrides.
                         Defaults to config setting; None means built-ins only.
        """
        path = catalog_dir or settings.catalog_dir
        self.catalog_dir = Path(path) if path else None
        self._stages: Dict[StageId, ChainStage] = {}
        self._agents: Dict[AgentType, AgentDescriptor] = {}
        self._gates: Dict[str, QualityGate] = {}
        self._servers: Dict[str, MCPServerConfig] = {}
        self._load()

    def _load(self) -> None:
        """Merge defaults with overrides and validate every entry."""
        raw = {
            "stages": self._merge("stages", DEFAULT_STAGES),
            "agents": self._merge("agents", DEFAULT_AGENTS),
            "gates": self._merge("gates", DEFAULT_GATES),
            "servers": self._merge("servers", DEFAULT_SERVERS),
        }
        try:
            for entry in raw["stages"]:
                stage = ChainStage.model_validate(entry)
                self._stages[stage.id] = stage
            for entry in raw["agents"]:
                agent = AgentDescriptor.model_validate(entry)
                self._agents[agent.agent_type] = agent
            for entry in raw["gates"]:
                gate = QualityGate.model_validate(entry)
                self._gates[gate.id] = gate
            for entry in raw["servers"]:
                server = MCPServerConfig.model_validate(entry)
                self._servers[server.id] = server
        except ValidationError as e:
            raise CatalogError(f"Invalid catalog entry: {e}") from e
        self._check_references()

    def _merge(self, section: str, defaults: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Overlay JSON overrides onto built-in entries, keyed by id."""
        merged = {_entry_key(section, e): e for e in defaults}
        for entry in self._read_overrides(section):
            merged[_entry_key(section, entry)] = entry
        return list(merged.values())

    def _read_overrides(self, section: str) -> List[Dict[str, Any]]:
        if self.catalog_dir is None:
            return []
        path = self.catalog_dir / CATALOG_FILES[section]
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise CatalogError(f"Could not read {path}: {e}") from e
        if not isinstance(data, list):
            raise CatalogError(f"{path} must contain a JSON list")
        logger.info("Loaded %d %s override(s) from %s", len(data), section, path)
        return data

    def _check_references(self) -> None:
        """Every stage gate, gate dependency and stage pointer must resolve."""
        missing_stages = [s for s in STAGE_ORDER if s not in self._stages]
        if missing_stages:
            raise CatalogError(f"Missing stage definitions: {[s.value for s in missing_stages]}")
        for stage in self._stages.values():
            for gate_id in stage.all_gates:
                if gate_id not in self._gates:
                    raise CatalogError(f"Stage {stage.id.value} references unknown gate '{gate_id}'")
        for gate in self._gates.values():
            for dep in gate.depends_on:
                if dep not in self._gates:
                    raise CatalogError(f"Gate {gate.id} depends on unknown gate '{dep}'")
        for stage_key, gate_ids in STAGE_GATE_MAPPING.items():
            for gate_id in gate_ids:
                if gate_id not in self._gates:
                    raise CatalogError(f"Adaptive mapping for {stage_key} references unknown gate '{gate_id}'")

    def get_stage(self, stage_id: StageId) -> ChainStage:
        """Get a stage definition.

        Raises:
            KeyError: If the stage is not defined.
        """
        if stage_id not in self._stages:
            raise KeyError(f"Stage not found: {stage_id}")
        return self._stages[stage_id]

    def get_agent(self, agent_type: AgentType) -> AgentDescriptor:
        if agent_type not in self._agents:
            raise KeyError(f"Agent not found: {agent_type}")
        return self._agents[agent_type]

    def get_gate(self, gate_id: str) -> QualityGate:
        if gate_id not in self._gates:
            raise KeyError(f"Gate not found: {gate_id}")
        return self._gates[gate_id]

    def gates_for(self, gate_ids: List[str]) -> List[QualityGate]:
        return [self.get_gate(g) for g in gate_ids]

    @property
    def stages(self) -> List[ChainStage]:
        """Stage definitions in pipeline order."""
        return [self._stages[s] for s in STAGE_ORDER]

    @property
    def agents(self) -> List[AgentDescriptor]:
        return list(self._agents.values())

    @property
    def gates(self) -> Dict[str, QualityGate]:
        return dict(self._gates)

    @property
    def servers(self) -> List[MCPServerConfig]:
        return list(self._servers.values())

    def export(self, output_dir: str) -> List[str]:
        """Write the effective catalog as JSON files (a starting point for overrides)."""
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        sections = {
            "stages": [s.model_dump(mode="json") for s in self.stages],
            "agents": [a.model_dump(mode="json") for a in self.agents],
            "gates": [g.model_dump(mode="json") for g in self._gates.values()],
            "servers": [s.model_dump(mode="json") for s in self.servers],
        }
        written = []
        for section, data in sections.items():
            path = out / CATALOG_FILES[section]
            path.write_text(json.dumps(data, indent=2))
            written.append(str(path))
        return written


# Singleton instance
_catalog_instance: Optional[EngineCatalog] = None


def get_catalog() -> EngineCatalog:
    """Get the singleton EngineCatalog instance."""
    global _catalog_instance
    if _catalog_instance is None:
        _catalog_instance = EngineCatalog()
    return _catalog_instance
