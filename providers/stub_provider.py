"""Deterministic offline provider for dry runs and tests."""

import re
from typing import List, Optional

from .base import InferenceProvider, LLMResponse


OUTPUT_FORMAT_MARKER = "# Output format"
IDEA_MARKER = "# Idea"
PREVIOUS_MARKER = "# Previous stage output"
BUILDS_ON = "- Builds on: "


def _section(text: str, marker: str) -> List[str]:
    """Lines under a top-level '# ' marker, up to the next top-level heading."""
    lines = text.splitlines()
    collected: List[str] = []
    inside = False
    for line in lines:
        if line.strip() == marker or (not inside and line.startswith(marker + " (")):
            inside = True
            continue
        if inside and re.match(r"^# \S", line):
            break
        if inside:
            collected.append(line)
    return collected


class StubProvider(InferenceProvider):
    """Echoes the requested section headings with placeholder content built from the idea."""

    def __init__(self, default_model: Optional[str] = None):
        self._default_model = default_model or "stub"

    @property
    def name(self) -> str:
        return "stub"

    @property
    def default_model(self) -> str:
        return self._default_model

    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        model: Optional[str] = None,
        max_tokens: int = 4096,
    ) -> LLMResponse:
        headings = [
            line[3:].strip() for line in _section(user_message, OUTPUT_FORMAT_MARKER)
            if line.startswith("## ")
        ]
        idea_lines = [line.strip() for line in _section(user_message, IDEA_MARKER) if line.strip()]
        idea = idea_lines[0] if idea_lines else "the proposed product"

        # Carry earlier section names forward so later stages stay consistent
        carried: List[str] = []
        for line in _section(user_message, PREVIOUS_MARKER):
            if line.startswith("## "):
                names = [line[3:].strip()]
            elif line.startswith(BUILDS_ON):
                names = [n.strip() for n in line[len(BUILDS_ON):].split(",")]
            else:
                continue
            carried.extend(n for n in names if n and n not in carried)

        parts = []
        for heading in headings or ["Summary"]:
            body = [
                f"{heading} for {idea}.",
                f"- Primary item describing the {heading.lower()}",
                f"- Secondary item refining the {heading.lower()}",
            ]
            if carried:
                body.append(BUILDS_ON + ", ".join(carried))
            if "stor" in heading.lower():
                body.append("- As a user, I want to use the product so that I reach my goal.")
            if "acceptance" in heading.lower():
                body.append("- Given a signed-in user, when they submit the form, then the result is saved.")
            parts.append(f"## {heading}\n\n" + "\n".join(body))
        content = "\n\n".join(parts)

        return LLMResponse(
            content=content,
            input_tokens=len(user_message.split()),
            output_tokens=len(content.split()),
            model=model or self._default_model,
            provider=self.name,
        )
