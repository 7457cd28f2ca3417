"""Text helpers shared by prompt batching and path handling."""

from __future__ import annotations

import math
import re
from pathlib import PurePosixPath

_EXTENSION_LANGUAGES = {
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".tsx": "typescriptreact",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascriptreact",
    ".py": "python",
    ".rb": "ruby",
    ".go": "go",
    ".java": "java",
    ".cs": "csharp",
    ".php": "php",
    ".rs": "rust",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".swift": "swift",
    ".sql": "sql",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
    ".toml": "toml",
    ".md": "markdown",
    ".mdx": "markdown",
}


def estimate_tokens(text: str) -> int:
    """Rough token estimate: four characters per token, rounded up."""
    return math.ceil(len(text) / 4)


def infer_language(filepath: str) -> str:
    return _EXTENSION_LANGUAGES.get(PurePosixPath(filepath or "").suffix.lower(), "unknown")


def normalize_path(value: str) -> str:
    """Normalize separators and strip leading ``./`` and slashes."""
    value = value.replace("\\", "/").strip()
    value = re.sub(r"^(?:\./|/)+", "", value)
    return re.sub(r"/+", "/", value)
