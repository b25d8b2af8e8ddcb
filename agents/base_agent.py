"""ChainAgent: the single executor behind every agent type.

Every agent instance:
- Binds its MCP capabilities through the selector (with documented fallbacks)
- Calls the inference provider with its role prompt, task and context view
- Reports the output regions (markdown headings) it claims
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from config import settings
from contracts import AgentInstance, AgentOutput, CapabilityResponse
from capabilities import MCPServerSelector, apply_fallback
from errors import CapabilityUnavailableError
from providers import InferenceProvider

logger = logging.getLogger(__name__)


_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")

# Characters of capability output forwarded into the agent prompt
CAPABILITY_NOTE_LIMIT = 1500


def normalize_region(heading: str) -> str:
    return re.sub(r"\s+", " ", heading.strip().lower())


def split_sections(content: str) -> List[Tuple[Optional[str], str]]:
    """Split markdown into (region, text) pairs; text before the first heading has region None."""
    sections: List[Tuple[Optional[str], List[str]]] = [(None, [])]
    for line in content.splitlines():
        match = _HEADING.match(line)
        if match:
            sections.append((normalize_region(match.group(2)), [line]))
        else:
            sections[-1][1].append(line)
    return [(region, "\n".join(lines).strip()) for region, lines in sections if region or "".join(lines).strip()]


def extract_regions(content: str) -> List[str]:
    """Distinct output regions claimed by a piece of content, in order."""
    seen: List[str] = []
    for region, _ in split_sections(content):
        if region and region not in seen:
            seen.append(region)
    return seen


def section_text(content: str, region: str) -> str:
    return "\n\n".join(text for r, text in split_sections(content) if r == region)


def remove_section(content: str, region: str) -> str:
    return "\n\n".join(text for r, text in split_sections(content) if r != region)


class ChainAgent:
    """Runs one AgentInstance against an inference provider.

    Dispatch is by data, not subclassing: the instance's AgentDescriptor
    supplies the role prompt, capability tags and allowed tools.
    """

    def __init__(
        self,
        provider: InferenceProvider,
        selector: Optional[MCPServerSelector] = None,
        model: Optional[str] = None,
    ):
        self.provider = provider
        self.selector = selector
        self.model = model

    def _build_system_prompt(self, instance: AgentInstance) -> str:
        descriptor = instance.descriptor
        parts = [descriptor.system_prompt or f"You are the {descriptor.agent_type.value} specialist."]
        if descriptor.allowed_tools:
            parts.append(f"\n\nAllowed tools: {', '.join(descriptor.allowed_tools)}.")
        parts.append(
            "\n\nContribute only to the sections your domain covers. Use the section "
            "headings from the output format exactly."
        )
        return "".join(parts)

    def _build_task_message(self, instance: AgentInstance, capability_notes: List[str]) -> str:
        parts = [instance.task]
        summary = instance.context.summary()
        if summary:
            parts.append(f"# Project context\n\n{summary}")
        if capability_notes:
            parts.append("# Capability results\n\n" + "\n\n".join(capability_notes))
        return "\n\n".join(parts)

    async def _call_capability(self, instance: AgentInstance, tag: str, required: bool) -> CapabilityResponse:
        payload = {"query": instance.task[:500], "agent": instance.agent_type.value}
        if self.selector is not None:
            return await self.selector.call_with_fallback(
                tag, payload, holder_id=instance.instance_id,
                agent_type=instance.agent_type, required=required,
            )
        degraded = apply_fallback(tag, payload)
        if degraded is not None:
            return degraded
        if required:
            raise CapabilityUnavailableError(tag, "no capability selector configured")
        return CapabilityResponse(success=False, fallback="omitted", error="no capability selector configured")

    async def bind_capabilities(self, instance: AgentInstance) -> Tuple[List[str], Dict[str, str], bool]:
        """Invoke every bound capability. Returns (prompt notes, sources, degraded)."""
        descriptor = instance.descriptor
        notes: List[str] = []
        sources: Dict[str, str] = {}
        degraded = False
        for tag in descriptor.mcp_capability_tags:
            response = await self._call_capability(instance, tag, tag in descriptor.required_capability_tags)
            sources[tag] = response.source
            if response.confidence_reduced:
                degraded = True
            if response.result is not None:
                text = response.result if isinstance(response.result, str) else json.dumps(response.result, default=str)
                notes.append(f"## {tag} ({response.source})\n\n{text[:CAPABILITY_NOTE_LIMIT]}")
        return notes, sources, degraded

    async def run(self, instance: AgentInstance) -> AgentOutput:
        """Execute one attempt for the instance.

        Raises:
            CapabilityUnavailableError: If a required capability has no server and no fallback.
            Exception: If the inference call fails.
        """
        notes, sources, degraded = await self.bind_capabilities(instance)
        response = await self.provider.complete(
            system_prompt=self._build_system_prompt(instance),
            user_message=self._build_task_message(instance, notes),
            model=self.model,
            max_tokens=settings.max_tokens_per_call,
        )
        if not response.content.strip():
            raise ValueError(f"{instance.agent_type.value} agent returned empty content")
        logger.debug(
            "Agent %s (%s) produced %d chars%s",
            instance.instance_id, instance.agent_type.value, len(response.content),
            " with reduced confidence" if degraded else "",
        )
        return AgentOutput(
            agent_type=instance.agent_type,
            instance_id=instance.instance_id,
            content=response.content,
            regions=extract_regions(response.content),
            confidence_reduced=degraded,
            capability_sources=sources,
            model=response.model,
        )
