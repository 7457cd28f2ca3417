"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from repoaudit.config import DEFAULT_EXCLUDE_DIRS, DEFAULT_INCLUDE_EXTENSIONS, AppConfig


class TestAppConfig:
    """Test AppConfig dataclass."""

    def test_default_config(self) -> None:
        """Should create config with default values."""
        config = AppConfig()

        assert config.db_path == Path(".repoaudit/cache.db")
        assert config.chunk_chars == 6000
        assert config.overlap == 400
        assert config.min_rules_per_chunk == 3
        assert config.open_scan_min_coverage == 0.5

    def test_custom_config(self) -> None:
        """Should create config with custom values."""
        config = AppConfig(
            db_path=Path("/custom/path.db"),
            chunk_chars=800,
            overlap=100,
            concurrency=2,
        )

        assert config.db_path == Path("/custom/path.db")
        assert config.chunk_chars == 800
        assert config.overlap == 100
        assert config.concurrency == 2

    def test_default_filters(self) -> None:
        """Default filters include source files and skip vendored trees."""
        config = AppConfig()

        assert config.include_extensions == DEFAULT_INCLUDE_EXTENSIONS
        assert ".ts" in config.include_extensions
        assert "node_modules" in config.exclude_dirs
        assert config.exclude_dirs == DEFAULT_EXCLUDE_DIRS

    def test_resolve_db_path_absolute(self) -> None:
        """Should return absolute path as-is."""
        config = AppConfig(db_path=Path("/absolute/path/db.db"))

        assert config.resolve_db_path(Path("/elsewhere")) == Path("/absolute/path/db.db")

    def test_resolve_db_path_relative_no_base(self) -> None:
        """Should return relative path when no base_dir provided."""
        config = AppConfig(db_path=Path("relative/db.db"))

        assert config.resolve_db_path(base_dir=None) == Path("relative/db.db")

    def test_resolve_db_path_relative_with_base(self, tmp_path: Path) -> None:
        """Should join relative path with base_dir."""
        config = AppConfig(db_path=Path("relative/db.db"))

        assert config.resolve_db_path(tmp_path) == tmp_path / "relative" / "db.db"

    @pytest.mark.parametrize(
        "field_name", ["chunk_chars", "concurrency", "rule_batch_size", "circuit_breaker_depth"]
    )
    def test_rejects_non_positive_values(self, field_name: str) -> None:
        """Counts and sizes must be positive."""
        with pytest.raises(ValueError, match=field_name):
            AppConfig(**{field_name: 0})

    def test_rejects_negative_overlap(self) -> None:
        """Overlap may be zero but not negative."""
        assert AppConfig(overlap=0).overlap == 0
        with pytest.raises(ValueError):
            AppConfig(overlap=-1)

    def test_rejects_out_of_range_coverage(self) -> None:
        """Coverage threshold is a ratio."""
        with pytest.raises(ValueError):
            AppConfig(open_scan_min_coverage=1.5)
