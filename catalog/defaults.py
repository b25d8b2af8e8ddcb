"""Built-in catalog entries: the five stages, seven agents, gates and MCP servers.

Plain dicts so they can be dumped to JSON and edited; EngineCatalog validates
them into contracts at load time.
"""

from typing import Any, Dict, List


DEFAULT_STAGES: List[Dict[str, Any]] = [
    {
        "id": "idea_definition",
        "title": "Idea Definition",
        "required_inputs": ["idea"],
        "output_format": ["Problem", "Target Users", "Value Proposition", "Scope"],
        "required_gates": ["completeness"],
        "optional_gates": ["structure"],
        "agent_policy": {
            "required_agents": ["analyzer"],
            "optional_agents": ["architect", "scribe"],
        },
        "requirement_tags": ["analysis", "discovery"],
        "next_stage": "prd",
        "prompt": (
            "Refine the idea into a crisp definition. State the problem, who has it, "
            "why the proposed solution is valuable, and what is in and out of scope."
        ),
    },
    {
        "id": "prd",
        "title": "Product Requirements Document",
        "required_inputs": ["idea_definition"],
        "output_format": ["Overview", "Goals", "Functional Requirements", "Non-Functional Requirements", "Success Metrics"],
        "required_gates": ["completeness", "consistency"],
        "optional_gates": ["structure"],
        "agent_policy": {
            "required_agents": ["scribe"],
            "optional_agents": ["analyzer", "architect", "security"],
        },
        "requirement_tags": ["documentation", "requirements", "analysis"],
        "next_stage": "trd",
        "prompt": (
            "Write a product requirements document for the defined idea. Number the "
            "functional requirements and make every success metric measurable."
        ),
    },
    {
        "id": "trd",
        "title": "Technical Requirements Document",
        "required_inputs": ["prd"],
        "output_format": ["Architecture", "Components", "Data Model", "Interfaces", "Security", "Performance"],
        "required_gates": ["completeness", "consistency", "security"],
        "optional_gates": [],
        "agent_policy": {
            "required_agents": ["architect"],
            "optional_agents": ["backend", "frontend", "security", "performance"],
        },
        "requirement_tags": ["architecture", "api", "data", "security", "ui"],
        "next_stage": "feature_breakdown",
        "prompt": (
            "Derive the technical requirements from the PRD: architecture, components, "
            "data model, interfaces, and the security and performance constraints."
        ),
    },
    {
        "id": "feature_breakdown",
        "title": "Feature Breakdown",
        "required_inputs": ["trd"],
        "output_format": ["Features", "Dependencies", "Priorities"],
        "required_gates": ["completeness", "consistency"],
        "optional_gates": ["structure"],
        "agent_policy": {
            "required_agents": [],
            "optional_agents": ["frontend", "backend", "security", "performance", "architect"],
        },
        "requirement_tags": ["ui", "component", "api", "data", "implementation"],
        "next_stage": "user_story",
        "prompt": (
            "Break the technical design into implementable features. Give each feature "
            "its dependencies and a priority."
        ),
    },
    {
        "id": "user_story",
        "title": "User Stories",
        "required_inputs": ["feature_breakdown"],
        "output_format": ["User Stories", "Acceptance Criteria"],
        "required_gates": ["completeness", "testability"],
        "optional_gates": ["security"],
        "agent_policy": {
            "required_agents": ["scribe"],
            "optional_agents": ["frontend", "backend", "analyzer"],
        },
        "requirement_tags": ["documentation", "testing", "implementation"],
        "next_stage": None,
        "prompt": (
            "Write user stories for every feature in the form 'As a <role>, I want "
            "<capability> so that <benefit>', each with Given/When/Then acceptance criteria."
        ),
    },
]


DEFAULT_AGENTS: List[Dict[str, Any]] = [
    {
        "agent_type": "frontend",
        "domain": "frontend",
        "domain_keywords": ["component", "react", "vue", "angular", "ui", "ux", "css", "responsive", "accessibility", "frontend"],
        "file_patterns": [".tsx", ".jsx", ".vue", ".svelte", ".css", ".scss", ".html"],
        "dir_patterns": ["components", "pages", "views", "styles", "public", "ui"],
        "stage_tags": ["ui", "component", "implementation"],
        "mcp_capability_tags": ["ui_generation", "documentation"],
        "allowed_tools": ["read", "write", "edit"],
        "system_prompt": "You are the frontend specialist. Focus on UI structure, components, accessibility and user experience.",
    },
    {
        "agent_type": "backend",
        "domain": "backend",
        "domain_keywords": ["api", "endpoint", "database", "server", "service", "backend", "queue", "rest", "graphql"],
        "file_patterns": [".py", ".go", ".java", ".rs", ".rb", ".sql"],
        "dir_patterns": ["api", "server", "services", "routes", "controllers", "models", "db", "migrations"],
        "stage_tags": ["api", "data", "implementation"],
        "mcp_capability_tags": ["documentation", "reasoning"],
        "allowed_tools": ["read", "write", "edit", "bash"],
        "system_prompt": "You are the backend specialist. Focus on APIs, data models, services and reliability.",
    },
    {
        "agent_type": "security",
        "domain": "security",
        "domain_keywords": ["security", "auth", "authentication", "authorization", "vulnerability", "encryption", "token", "permission", "compliance"],
        "file_patterns": [".pem", ".key", "policy", "auth"],
        "dir_patterns": ["auth", "security", "policies", "crypto"],
        "stage_tags": ["security", "compliance"],
        "mcp_capability_tags": ["reasoning"],
        "required_capability_tags": [],
        "allowed_tools": ["read", "grep"],
        "system_prompt": "You are the security specialist. Identify threats, required controls and compliance obligations.",
    },
    {
        "agent_type": "performance",
        "domain": "performance",
        "domain_keywords": ["performance", "latency", "throughput", "optimization", "cache", "scalability", "benchmark", "load"],
        "file_patterns": ["bench", "perf", ".prof"],
        "dir_patterns": ["benchmarks", "perf", "profiling", "load-tests"],
        "stage_tags": ["performance", "scalability"],
        "mcp_capability_tags": ["test_automation", "reasoning"],
        "allowed_tools": ["read", "bash"],
        "system_prompt": "You are the performance specialist. Set budgets and find bottlenecks before they ship.",
    },
    {
        "agent_type": "architect",
        "domain": "architecture",
        "domain_keywords": ["architecture", "design", "system", "scalable", "microservice", "pattern", "integration", "module"],
        "file_patterns": ["docker-compose", "Dockerfile", ".tf", ".proto"],
        "dir_patterns": ["architecture", "infra", "deploy", "adr", "terraform", "k8s"],
        "stage_tags": ["architecture", "analysis"],
        "mcp_capability_tags": ["reasoning", "documentation"],
        "allowed_tools": ["read", "grep"],
        "system_prompt": "You are the system architect. Define boundaries, interfaces and trade-offs.",
    },
    {
        "agent_type": "analyzer",
        "domain": "analysis",
        "domain_keywords": ["analyze", "analysis", "investigate", "root cause", "assess", "evaluate", "risk", "debug"],
        "file_patterns": [".log", ".ipynb", ".csv"],
        "dir_patterns": ["analysis", "reports", "notebooks", "logs"],
        "stage_tags": ["analysis", "discovery", "requirements"],
        "mcp_capability_tags": ["reasoning"],
        "allowed_tools": ["read", "grep"],
        "system_prompt": "You are the analyst. Challenge assumptions and surface risks and unknowns with evidence.",
    },
    {
        "agent_type": "scribe",
        "domain": "documentation",
        "domain_keywords": ["document", "documentation", "readme", "guide", "specification", "requirements", "story", "wiki"],
        "file_patterns": [".md", ".rst", ".adoc", ".txt"],
        "dir_patterns": ["docs", "documentation", "wiki", "guides"],
        "stage_tags": ["documentation", "requirements", "testing"],
        "mcp_capability_tags": ["documentation"],
        "allowed_tools": ["read", "write"],
        "system_prompt": "You are the technical writer. Produce clear, complete and well-structured documents.",
    },
]


DEFAULT_GATES: List[Dict[str, Any]] = [
    {"id": "completeness", "threshold": 0.8, "timeout_ms": 10_000, "required": True},
    {"id": "structure", "threshold": 0.7, "timeout_ms": 10_000, "required": False},
    {"id": "consistency", "threshold": 0.5, "timeout_ms": 10_000, "required": True, "depends_on": ["completeness"]},
    {
        "id": "security",
        "threshold": 0.95,
        "timeout_ms": 30_000,
        "required": True,
        "required_capability_tags": ["security_scan"],
    },
    {"id": "testability", "threshold": 0.8, "timeout_ms": 10_000, "required": True, "depends_on": ["completeness"]},
    {
        "id": "critic",
        "threshold": 0.7,
        "timeout_ms": 120_000,
        "required": False,
        "depends_on": ["completeness"],
    },
]


DEFAULT_SERVERS: List[Dict[str, Any]] = [
    {
        "id": "context7",
        "capability_tags": ["documentation"],
        "priority": 10,
        "health_check": {"interval_ms": 30_000, "timeout_ms": 5_000},
        "max_concurrent_leases": 4,
        "command": "npx",
        "args": ["-y", "@upstash/context7-mcp"],
        "tools": {"documentation": "get-library-docs"},
    },
    {
        "id": "sequential",
        "capability_tags": ["reasoning", "security_scan"],
        "priority": 10,
        "health_check": {"interval_ms": 30_000, "timeout_ms": 5_000},
        "max_concurrent_leases": 2,
        "command": "npx",
        "args": ["-y", "@modelcontextprotocol/server-sequential-thinking"],
        "tools": {"reasoning": "sequentialthinking", "security_scan": "sequentialthinking"},
    },
    {
        "id": "magic",
        "capability_tags": ["ui_generation"],
        "priority": 20,
        "health_check": {"interval_ms": 60_000, "timeout_ms": 10_000},
        "max_concurrent_leases": 2,
        "command": "npx",
        "args": ["-y", "@jpisnice/shadcn-ui-mcp-server"],
        "tools": {"ui_generation": "get_component"},
    },
    {
        "id": "playwright",
        "capability_tags": ["test_automation"],
        "priority": 20,
        "health_check": {"interval_ms": 60_000, "timeout_ms": 10_000},
        "max_concurrent_leases": 1,
        "command": "npx",
        "args": ["-y", "@playwright/mcp"],
        "tools": {"test_automation": "browser_snapshot"},
    },
]
