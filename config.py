"""Configuration settings for the Prompt Chain Engine."""

# Load .env into os.environ so provider API keys (e.g. ANTHROPIC_API_KEY) resolve
try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import Dict, List, Optional
from pathlib import Path


class Settings(BaseSettings):
    """Global settings for the Prompt Chain Engine.

    Settings can be overridden via environment variables with CHAIN_ENGINE_ prefix.
    Example: CHAIN_ENGINE_MAX_CONCURRENT_AGENTS=8
    """

    # Inference
    default_provider: str = Field(
        default="litellm",
        description="Inference provider used for stage and agent content (litellm, anthropic, openai, stub)"
    )
    default_model: str = Field(
        default="anthropic/claude-sonnet-4-20250514",
        description="Default model for stage and agent inference calls"
    )
    critic_model: Optional[str] = Field(
        default=None,
        description="Model used by the critic gate checker (defaults to default_model)"
    )
    max_tokens_per_call: int = Field(
        default=4096,
        description="Maximum tokens per individual inference call"
    )
    api_timeout_seconds: int = Field(
        default=120,
        description="Inference call timeout in seconds"
    )
    anthropic_api_key: str = Field(
        default="",
        description="Anthropic API key (env: CHAIN_ENGINE_ANTHROPIC_API_KEY or ANTHROPIC_API_KEY)",
    )
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key (env: CHAIN_ENGINE_OPENAI_API_KEY or OPENAI_API_KEY)",
    )

    # Agent coordination
    max_concurrent_agents: int = Field(
        default=4,
        ge=1,
        description="Maximum agent instances running at once within a stage"
    )
    agent_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Per-instance timeout; stragglers are treated as failed"
    )
    agent_cancel_grace_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Grace period for cancelled instances before force termination"
    )
    agent_max_retries: int = Field(
        default=1,
        ge=0,
        description="Retries with the same descriptor before a domain is dropped"
    )

    # Scoring thresholds
    auto_spawn_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Minimum total score for an agent to be spawned automatically"
    )
    suggest_threshold: float = Field(
        default=0.70,
        ge=0.0,
        le=1.0,
        description="Minimum total score for an agent to be suggested to the caller"
    )
    inclusive_boundaries: bool = Field(
        default=True,
        description="Compare scores against thresholds with >= (True) or > (False)"
    )

    # Wave mode
    wave_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum wave score for multi-wave execution"
    )
    context_change_threshold: float = Field(
        default=0.15,
        ge=0.0,
        le=1.0,
        description="Absolute per-domain score delta that triggers wave re-assessment"
    )

    # Context analysis
    context_max_depth: int = Field(
        default=6,
        ge=0,
        description="Maximum directory depth scanned below the project root"
    )
    context_max_files: int = Field(
        default=5000,
        ge=1,
        description="Maximum number of files inspected per analysis"
    )
    context_max_file_bytes: int = Field(
        default=64_000,
        ge=0,
        description="Bytes read from each text file for keyword and import signals"
    )

    # MCP servers
    mcp_min_success_rate: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Servers below this rolling success rate are skipped"
    )
    mcp_max_latency_ms: float = Field(
        default=30_000.0,
        gt=0,
        description="Servers above this rolling mean latency are skipped"
    )
    mcp_unhealthy_after_failures: int = Field(
        default=3,
        ge=1,
        description="Consecutive health-check failures before a server is excluded"
    )
    mcp_metrics_window: int = Field(
        default=20,
        ge=1,
        description="Number of recent calls kept for rolling metrics"
    )
    mcp_call_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for a single capability call"
    )
    mcp_health_checks_enabled: bool = Field(
        default=True,
        description="Check capability server health while a run executes"
    )

    # Quality gates
    max_parallel_gates: int = Field(
        default=4,
        ge=1,
        description="Maximum gates executed at once by the parallel strategy"
    )
    gate_cache_enabled: bool = Field(
        default=True,
        description="Reuse gate results for byte-identical input and tool versions"
    )
    gate_cache_max_entries: int = Field(
        default=512,
        ge=1,
        description="Gate results kept in the cache before the oldest is evicted"
    )

    # Paths
    catalog_dir: Optional[str] = Field(
        default=None,
        description="Directory with stages.json / agents.json / gates.json / servers.json overrides"
    )
    output_dir: str = Field(
        default="./outputs",
        description="Directory for exported run reports"
    )

    model_config = {
        "env_prefix": "CHAIN_ENGINE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",  # ignore extra env vars (e.g. OPENAI_API_KEY) not in schema
    }

    def get_output_path(self) -> Path:
        """Get output path as Path object."""
        return Path(self.output_dir)

    def get_catalog_path(self) -> Optional[Path]:
        """Get catalog override path as Path object, if configured."""
        return Path(self.catalog_dir) if self.catalog_dir else None

    def meets_threshold(self, value: float, threshold: float) -> bool:
        """Compare a score against a threshold using the configured boundary policy."""
        if self.inclusive_boundaries:
            return value >= threshold
        return value > threshold


# Agent scoring weights: stage requirement, content analysis, context, preference
AGENT_SCORE_WEIGHTS: Dict[str, float] = {
    "stage_requirement": 0.40,
    "content": 0.35,
    "context": 0.15,
    "preference": 0.10,
}

# Wave mode complexity weights
WAVE_WEIGHTS: Dict[str, float] = {
    "chain_complexity": 0.35,
    "agent_coordination": 0.25,
    "implementation_scale": 0.20,
    "project_context": 0.15,
    "quality_requirements": 0.05,
}

# Context analyzer signal-group weights
CONTEXT_SIGNAL_WEIGHTS: Dict[str, float] = {
    "extensions": 0.3,
    "directories": 0.4,
    "keywords": 0.2,
    "imports": 0.1,
}

# Stage -> gate subset used by the adaptive gate strategy
STAGE_GATE_MAPPING: Dict[str, List[str]] = {
    "idea_definition": ["completeness", "structure"],
    "prd": ["completeness", "structure", "consistency"],
    "trd": ["completeness", "consistency", "security"],
    "feature_breakdown": ["completeness", "structure", "consistency"],
    "user_story": ["completeness", "testability", "security"],
}

# Agent type -> preferred MCP servers, most preferred first
AGENT_SERVER_AFFINITY: Dict[str, List[str]] = {
    "frontend": ["magic", "context7", "playwright"],
    "backend": ["context7", "sequential"],
    "security": ["sequential", "context7"],
    "performance": ["playwright", "sequential"],
    "architect": ["sequential", "context7"],
    "analyzer": ["sequential", "context7"],
    "scribe": ["context7", "sequential"],
}

# Capability tag -> degraded fallback applied when no server is available
CAPABILITY_FALLBACKS: Dict[str, str] = {
    "documentation": "search_lookup",
    "reasoning": "single_pass_analysis",
}

# Wave phase -> agent types spawned in that phase
WAVE_PHASE_AGENTS: Dict[str, List[str]] = {
    "foundation": ["architect", "backend", "security"],
    "enhancement": ["frontend", "analyzer"],
    "optimization": ["performance", "scribe"],
}

# Fixed descriptor priority used for aggregation order and conflict resolution
AGENT_PRIORITY: List[str] = [
    "architect",
    "security",
    "backend",
    "frontend",
    "performance",
    "analyzer",
    "scribe",
]


# Create singleton instance
settings = Settings()
