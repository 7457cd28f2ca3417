"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import FrozenSet

DEFAULT_INCLUDE_EXTENSIONS: FrozenSet[str] = frozenset(
    {
        ".ts",
        ".tsx",
        ".js",
        ".jsx",
        ".mjs",
        ".cjs",
        ".json",
        ".py",
        ".go",
        ".rb",
        ".java",
        ".cs",
        ".php",
        ".rs",
        ".kt",
        ".swift",
        ".sql",
    }
)

DEFAULT_EXCLUDE_DIRS: FrozenSet[str] = frozenset(
    {"node_modules", ".git", ".repoaudit", "dist", "build", ".next", "coverage", "out"}
)


def _get_default_db_path() -> Path:
    return Path(".repoaudit") / "cache.db"


@dataclass(slots=True)
class AppConfig:
    db_path: Path | None = None
    chunk_chars: int = 6000
    overlap: int = 400
    max_file_bytes: int = 200_000
    include_extensions: FrozenSet[str] = field(default_factory=lambda: DEFAULT_INCLUDE_EXTENSIONS)
    exclude_dirs: FrozenSet[str] = field(default_factory=lambda: DEFAULT_EXCLUDE_DIRS)

    # LLM batching
    max_prompt_tokens: int = 6500
    base_prompt_tokens: int = 900
    min_batch_size: int = 1
    max_batch_chunks: int = 8
    rule_batch_size: int = 4
    min_rules_per_chunk: int = 3
    circuit_breaker_depth: int = 4
    concurrency: int = 4

    # Reachability and open scan gating
    reachability_max_depth: int = 8
    reachability_max_entry_points: int = 3
    open_scan_min_coverage: float = 0.5

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        for name in (
            "chunk_chars",
            "max_file_bytes",
            "max_prompt_tokens",
            "min_batch_size",
            "max_batch_chunks",
            "rule_batch_size",
            "min_rules_per_chunk",
            "circuit_breaker_depth",
            "concurrency",
            "reachability_max_depth",
            "reachability_max_entry_points",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.overlap < 0 or self.base_prompt_tokens < 0:
            raise ValueError("overlap and base_prompt_tokens must not be negative")
        if not 0.0 <= self.open_scan_min_coverage <= 1.0:
            raise ValueError("open_scan_min_coverage must be between 0 and 1")

    def resolve_db_path(self, base_dir: Path | None = None) -> Path:
        if self.db_path is None:
            self.db_path = _get_default_db_path()
        if Path(self.db_path).is_absolute() or base_dir is None:
            return Path(self.db_path)
        return base_dir / self.db_path
