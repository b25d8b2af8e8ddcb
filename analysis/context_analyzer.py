"""Context Analyzer: weighted project profile from filesystem signals.

Four signal groups are collected in one bounded walk of the project tree
and combined per domain with CONTEXT_SIGNAL_WEIGHTS:

1. File extensions (0.3)
2. Directory-structure patterns (0.4)
3. Content keywords (0.2)
4. Import / framework detection (0.1)

The analysis is a pure read. An unreadable subtree or file contributes
nothing and is listed in ProjectContext.unreadable_paths.
"""

import hashlib
import json
import logging
import os
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from config import settings, CONTEXT_SIGNAL_WEIGHTS
from contracts import Domain, ProjectContext, SignalBreakdown
from errors import ContextAnalysisError

logger = logging.getLogger(__name__)


EXCLUDED_DIRS: Set[str] = {
    "node_modules", ".git", ".hg", ".svn", "dist", "build", "vendor",
    "__pycache__", ".venv", "venv", ".tox", ".mypy_cache", ".pytest_cache",
    ".next", ".nuxt", "target", "coverage", ".idea", ".vscode",
}

# Files whose content is read for keyword and import signals
TEXT_EXTENSIONS: Set[str] = {
    ".py", ".js", ".jsx", ".ts", ".tsx", ".vue", ".svelte", ".go", ".rs", ".java",
    ".rb", ".php", ".cs", ".kt", ".swift", ".sql", ".md", ".rst", ".txt", ".json",
    ".yaml", ".yml", ".toml", ".html", ".css", ".scss", ".tf", ".proto", ".cfg", ".ini",
}

# Per-domain signal tables
DOMAIN_SIGNALS: Dict[Domain, Dict[str, List[str]]] = {
    Domain.FRONTEND: {
        "extensions": [".tsx", ".jsx", ".vue", ".svelte", ".css", ".scss", ".less", ".html"],
        "directories": ["components", "pages", "views", "styles", "public", "assets", "layouts", "hooks"],
        "keywords": ["component", "react", "props", "usestate", "render", "css", "responsive", "accessibility"],
        "imports": ["react", "vue", "svelte", "@angular", "next", "nuxt", "tailwindcss", "redux"],
    },
    Domain.BACKEND: {
        "extensions": [".py", ".go", ".java", ".rs", ".rb", ".php", ".cs", ".sql"],
        "directories": ["api", "server", "services", "routes", "controllers", "models", "migrations", "db"],
        "keywords": ["endpoint", "database", "query", "request", "response", "middleware", "schema", "transaction"],
        "imports": ["flask", "django", "fastapi", "express", "sqlalchemy", "prisma", "spring", "gin"],
    },
    Domain.SECURITY: {
        "extensions": [".pem", ".key", ".crt", ".rego"],
        "directories": ["auth", "security", "policies", "crypto", "iam"],
        "keywords": ["password", "token", "encrypt", "authentication", "authorization", "csrf", "jwt", "oauth"],
        "imports": ["jwt", "jsonwebtoken", "passport", "bcrypt", "cryptography", "oauthlib", "authlib"],
    },
    Domain.PERFORMANCE: {
        "extensions": [".prof", ".perf"],
        "directories": ["benchmarks", "bench", "perf", "profiling", "load-tests", "loadtest"],
        "keywords": ["latency", "throughput", "benchmark", "cache", "profil", "optimiz"],
        "imports": ["redis", "memcache", "locust", "k6", "pytest_benchmark", "lighthouse"],
    },
    Domain.ARCHITECTURE: {
        "extensions": [".tf", ".proto", ".puml", ".drawio"],
        "directories": ["infra", "deploy", "architecture", "adr", "terraform", "k8s", "helm", "charts"],
        "keywords": ["architecture", "microservice", "interface", "adapter", "event", "queue", "scalab"],
        "imports": ["grpc", "kafka", "celery", "pika", "boto3", "kubernetes"],
    },
    Domain.ANALYSIS: {
        "extensions": [".ipynb", ".csv", ".parquet", ".log"],
        "directories": ["analysis", "notebooks", "reports", "data", "logs"],
        "keywords": ["analysis", "metric", "dataset", "investigat", "root cause", "report"],
        "imports": ["pandas", "numpy", "scipy", "matplotlib", "polars", "sklearn"],
    },
    Domain.DOCUMENTATION: {
        "extensions": [".md", ".rst", ".adoc"],
        "directories": ["docs", "doc", "documentation", "wiki", "guides"],
        "keywords": ["readme", "guide", "tutorial", "documentation", "usage", "installation"],
        "imports": ["sphinx", "mkdocs", "docusaurus", "typedoc"],
    },
}

# Saturating increment per distinct hit, per signal group
SIGNAL_INCREMENTS: Dict[str, float] = {
    "extensions": 0.1,  # per matching file
    "directories": 0.5,  # per distinct matching directory name
    "keywords": 0.25,  # per distinct keyword
    "imports": 0.5,  # per distinct framework
}

_PY_IMPORT = re.compile(r"^\s*(?:from|import)\s+([A-Za-z_][\w\.]*)", re.MULTILINE)
_JS_IMPORT = re.compile(r"""(?:from\s+|require\(\s*|import\s+)['"](@?[\w\-\.]+(?:/[\w\-\.]+)?)['"]""")


@dataclass
class _ScanState:
    """Mutable accumulator for a single walk; frozen into a ProjectContext at the end."""
    files: int = 0
    extensions: Counter = field(default_factory=Counter)
    directories: Counter = field(default_factory=Counter)
    keywords: Counter = field(default_factory=Counter)
    frameworks: Counter = field(default_factory=Counter)
    unreadable: List[str] = field(default_factory=list)
    digest: Any = field(default_factory=hashlib.sha256)


class ContextAnalyzer:
    """Builds a ProjectContext from a bounded, read-only scan of a project root."""

    def __init__(
        self,
        max_depth: Optional[int] = None,
        max_files: Optional[int] = None,
        max_file_bytes: Optional[int] = None,
        signals: Optional[Dict[Domain, Dict[str, List[str]]]] = None,
    ):
        self.max_depth = settings.context_max_depth if max_depth is None else max_depth
        self.max_files = max_files or settings.context_max_files
        self.max_file_bytes = settings.context_max_file_bytes if max_file_bytes is None else max_file_bytes
        self.signals = signals or DOMAIN_SIGNALS

        self._all_keywords = sorted({kw for table in self.signals.values() for kw in table["keywords"]})
        self._keyword_patterns = {kw: re.compile(r"\b" + re.escape(kw)) for kw in self._all_keywords}
        self._all_frameworks = {fw for table in self.signals.values() for fw in table["imports"]}

    def analyze(self, project_root: str, version: int = 1) -> ProjectContext:
        """Scan project_root and return a new immutable ProjectContext.

        Raises:
            ContextAnalysisError: If the root is missing, unreadable or has no readable files.
        """
        root = Path(project_root)
        if not root.exists():
            raise ContextAnalysisError(str(root), "path does not exist")
        if not root.is_dir():
            raise ContextAnalysisError(str(root), "not a directory")
        if not os.access(root, os.R_OK | os.X_OK):
            raise ContextAnalysisError(str(root), "permission denied")

        state = _ScanState()
        try:
            self._walk(root, root, 0, state)
        except PermissionError as e:
            raise ContextAnalysisError(str(root), f"permission denied: {e}") from e

        if state.files == 0:
            raise ContextAnalysisError(str(root), "no readable files")

        breakdown = {domain: self._breakdown(domain, state) for domain in self.signals}
        domain_scores = {
            domain: round(min(1.0, sum(
                CONTEXT_SIGNAL_WEIGHTS[group] * getattr(b, group) for group in CONTEXT_SIGNAL_WEIGHTS
            )), 10)
            for domain, b in breakdown.items()
        }

        context = ProjectContext(
            version=version,
            root=str(root.resolve()),
            domain_scores=domain_scores,
            signal_breakdown=breakdown,
            extension_histogram=dict(state.extensions),
            directory_hits=dict(state.directories),
            keyword_hits=dict(state.keywords),
            framework_hits=dict(state.frameworks),
            files_scanned=state.files,
            unreadable_paths=state.unreadable,
            fingerprint=state.digest.hexdigest(),
        )
        top = sorted(domain_scores.items(), key=lambda kv: kv[1], reverse=True)[:3]
        logger.info(
            "Analyzed %s (v%d): %d files, top domains %s",
            context.root, version, state.files,
            ", ".join(f"{d.value}={s:.2f}" for d, s in top),
        )
        if state.unreadable:
            logger.warning("Skipped %d unreadable path(s) under %s", len(state.unreadable), context.root)
        return context

    def rederive(self, previous: ProjectContext, project_root: Optional[str] = None) -> ProjectContext:
        """Re-scan and return the next version; `previous` is left untouched."""
        return self.analyze(project_root or previous.root, version=previous.version + 1)

    def _walk(self, root: Path, directory: Path, depth: int, state: _ScanState) -> None:
        """Depth-first scan. PermissionError on the root propagates; below it, the subtree is skipped."""
        if state.files >= self.max_files:
            return
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            if directory == root:
                raise PermissionError(str(e)) from e
            state.unreadable.append(str(directory.relative_to(root)))
            return

        for entry in entries:
            if state.files >= self.max_files:
                logger.debug("File cap of %d reached, stopping scan", self.max_files)
                return
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
                is_file = entry.is_file(follow_symlinks=False)
            except OSError:
                state.unreadable.append(str(Path(entry.path).relative_to(root)))
                continue

            if is_dir:
                name = entry.name.lower()
                if name in EXCLUDED_DIRS or (name.startswith(".") and name not in {".github"}):
                    continue
                state.directories[name] += 1
                if depth < self.max_depth:
                    self._walk(root, Path(entry.path), depth + 1, state)
            elif is_file:
                self._scan_file(root, Path(entry.path), state)

    def _scan_file(self, root: Path, path: Path, state: _ScanState) -> None:
        rel = str(path.relative_to(root))
        suffix = path.suffix.lower()
        key = suffix or path.name
        try:
            size = path.stat().st_size
        except OSError:
            state.unreadable.append(rel)
            return

        state.files += 1
        state.extensions[key] += 1
        state.digest.update(f"{rel}:{size}\n".encode("utf-8"))

        if self.max_file_bytes == 0:
            return
        if suffix not in TEXT_EXTENSIONS and path.name not in {"Dockerfile", "requirements.txt"}:
            return
        try:
            with open(path, "r", encoding="utf-8", errors="ignore") as f:
                text = f.read(self.max_file_bytes)
        except OSError:
            state.unreadable.append(rel)
            return

        lowered = text.lower()
        for kw, pattern in self._keyword_patterns.items():
            if pattern.search(lowered):
                state.keywords[kw] += 1
        for framework in self._detect_frameworks(path, text):
            state.frameworks[framework] += 1

    def _detect_frameworks(self, path: Path, text: str) -> Set[str]:
        """Known frameworks imported by source files or declared in manifests."""
        names: Set[str] = set()
        if path.name == "package.json":
            try:
                manifest = json.loads(text)
            except ValueError:
                manifest = {}
            if isinstance(manifest, dict):
                for section in ("dependencies", "devDependencies", "peerDependencies"):
                    deps = manifest.get(section)
                    if isinstance(deps, dict):
                        names.update(deps)
        elif path.name == "requirements.txt":
            for line in text.splitlines():
                match = re.match(r"\s*([A-Za-z0-9_\-\.]+)", line)
                if match and not line.lstrip().startswith("#"):
                    names.add(match.group(1))
        else:
            names.update(m.split(".")[0] for m in _PY_IMPORT.findall(text))
            names.update(_JS_IMPORT.findall(text))

        detected = set()
        for name in names:
            normalized = name.lower()
            candidates = {normalized, normalized.split("/")[0]}
            detected.update(candidates & self._all_frameworks)
        return detected

    def _breakdown(self, domain: Domain, state: _ScanState) -> SignalBreakdown:
        """Saturating per-group scores for one domain."""
        table = self.signals[domain]
        ext_files = sum(state.extensions.get(ext, 0) for ext in table["extensions"])
        dir_hits = sum(1 for d in table["directories"] if d in state.directories)
        kw_hits = sum(1 for kw in table["keywords"] if kw in state.keywords)
        fw_hits = sum(1 for fw in table["imports"] if fw in state.frameworks)
        return SignalBreakdown(
            extensions=min(1.0, SIGNAL_INCREMENTS["extensions"] * ext_files),
            directories=min(1.0, SIGNAL_INCREMENTS["directories"] * dir_hits),
            keywords=min(1.0, SIGNAL_INCREMENTS["keywords"] * kw_hits),
            imports=min(1.0, SIGNAL_INCREMENTS["imports"] * fw_hits),
        )
