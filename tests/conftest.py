"""Shared fakes and fixtures for the engine tests."""

import asyncio
from typing import Any, Dict, List, Optional, Union

import pytest

from agents import extract_regions
from capabilities import CapabilityInvoker
from contracts import (
    AgentDescriptor,
    AgentInstance,
    AgentOutput,
    AgentType,
    CapabilityResponse,
    Domain,
    MCPServerConfig,
    QualityGate,
)
from gates import Checker, CheckResult, GateInput
from providers import LLMResponse, StubProvider


class FakeProvider(StubProvider):
    """Stub output, with every call recorded and optional scripted replies."""

    def __init__(self, replies: Optional[List[str]] = None, fail_with: Optional[Exception] = None):
        super().__init__("fake-model")
        self.replies = list(replies or [])
        self.fail_with = fail_with
        self.calls: List[Dict[str, Any]] = []

    @property
    def name(self) -> str:
        return "fake"

    async def complete(self, system_prompt, user_message, model=None, max_tokens=4096) -> LLMResponse:
        self.calls.append({"system_prompt": system_prompt, "user_message": user_message, "model": model})
        if self.fail_with is not None:
            raise self.fail_with
        if self.replies:
            content = self.replies.pop(0)
            return LLMResponse(content=content, input_tokens=1, output_tokens=1, model="fake-model", provider="fake")
        return await super().complete(system_prompt, user_message, model, max_tokens)


class FakeExecutor:
    """Stands in for ChainAgent inside the coordinator.

    behaviours maps agent type -> list of per-attempt actions:
    a string (returned as content), an Exception (raised), or a float
    (sleep that long, then return default content).
    """

    def __init__(self, behaviours: Optional[Dict[AgentType, List[Any]]] = None, delays: Optional[Dict[AgentType, float]] = None):
        self.behaviours = behaviours or {}
        self.delays = delays or {}
        self.selector = None
        self.calls: List[AgentType] = []

    async def run(self, instance: AgentInstance) -> AgentOutput:
        agent_type = instance.agent_type
        attempt = sum(1 for a in self.calls if a == agent_type)
        self.calls.append(agent_type)
        if agent_type in self.delays:
            await asyncio.sleep(self.delays[agent_type])
        script = self.behaviours.get(agent_type, [])
        action = script[attempt] if attempt < len(script) else None
        if isinstance(action, BaseException):
            raise action
        if isinstance(action, (int, float)) and not isinstance(action, bool):
            await asyncio.sleep(action)
            action = None
        content = action if isinstance(action, str) else f"## {agent_type.value} notes\n\nFrom {agent_type.value}."
        return AgentOutput(
            agent_type=agent_type,
            instance_id=instance.instance_id,
            content=content,
            regions=extract_regions(content),
        )


class FakeInvoker(CapabilityInvoker):
    """Scripted MCP invoker.

    results maps server id -> result dict, an Exception, or "fail".
    health maps server id -> ping outcome (default True).
    """

    def __init__(self, results: Optional[Dict[str, Any]] = None, health: Optional[Dict[str, bool]] = None, delay: float = 0.0):
        self.results = results or {}
        self.health = health or {}
        self.delay = delay
        self.calls: List[str] = []

    async def invoke(self, server: MCPServerConfig, capability_tag: str, payload: Dict[str, Any]) -> CapabilityResponse:
        self.calls.append(server.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results.get(server.id, {"ok": True})
        if isinstance(result, BaseException):
            raise result
        if result == "fail":
            return CapabilityResponse(success=False, server_id=server.id, error="scripted failure", latency_ms=5.0)
        return CapabilityResponse(result=result, success=True, server_id=server.id, latency_ms=5.0)

    async def ping(self, server: MCPServerConfig) -> bool:
        return self.health.get(server.id, True)


class FixedScoreChecker(Checker):
    """Checker returning a fixed score, optionally after a delay."""

    def __init__(self, name: str, score: float, delay: float = 0.0, version: str = "1"):
        self.name = name
        self.score = score
        self.delay = delay
        self.version = version
        self.calls = 0

    async def check(self, gate_input: GateInput, gate: QualityGate) -> CheckResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return CheckResult(self.score, [] if self.score >= gate.threshold else [f"{self.name} scored {self.score}"])


def make_server(
    server_id: str,
    tags: Union[str, List[str]],
    priority: int = 10,
    leases: int = 4,
) -> MCPServerConfig:
    return MCPServerConfig(
        id=server_id,
        capability_tags=[tags] if isinstance(tags, str) else tags,
        priority=priority,
        max_concurrent_leases=leases,
        command="npx",
        args=["-y", server_id],
    )


def make_descriptor(agent_type: AgentType, domain: Domain = Domain.BACKEND, **kwargs) -> AgentDescriptor:
    return AgentDescriptor(agent_type=agent_type, domain=domain, **kwargs)


@pytest.fixture
def frontend_project(tmp_path):
    """A small React project tree."""
    (tmp_path / "components").mkdir()
    (tmp_path / "pages").mkdir()
    (tmp_path / "components" / "Button.tsx").write_text(
        "import React from 'react';\n"
        "export const Button = (props) => <button>{props.label}</button>;\n"
    )
    (tmp_path / "components" / "Card.tsx").write_text(
        "import React, { useState } from 'react';\n"
        "// component with responsive layout\n"
        "export const Card = () => { const [open] = useState(false); return null; };\n"
    )
    (tmp_path / "pages" / "index.jsx").write_text("import { Button } from '../components/Button';\n")
    (tmp_path / "package.json").write_text('{"dependencies": {"react": "^18.0.0", "next": "^14.0.0"}}')
    return tmp_path


@pytest.fixture
def backend_project(tmp_path):
    """A small Flask API tree."""
    (tmp_path / "api").mkdir()
    (tmp_path / "models").mkdir()
    (tmp_path / "api" / "routes.py").write_text(
        "from flask import Flask\n"
        "app = Flask(__name__)\n"
        "# endpoint returning a database query response\n"
    )
    (tmp_path / "models" / "user.py").write_text("import sqlalchemy\n# schema for the user table\n")
    (tmp_path / "requirements.txt").write_text("flask==3.0\nsqlalchemy\n")
    return tmp_path
