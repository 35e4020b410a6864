"""Shared test fixtures and configuration.

Sets environment variables before any backend modules are imported, so
module-level settings point at a throwaway data directory.
"""

import os
import tempfile

# Set env vars BEFORE any backend imports happen.
# pytest loads conftest.py before test modules, so this runs first.
os.environ.setdefault("KAPPA_DATA_DIR", tempfile.mkdtemp(prefix="kappa-test-"))
os.environ.setdefault("KAPPA_AUTH_ENABLED", "false")

import pytest  # noqa: E402

from backend import config, storage  # noqa: E402
from backend.survey import ExpertResponse, RatingTable, ScaleItem  # noqa: E402


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    """Point project storage and the analysis settings file at tmp_path."""
    projects_dir = tmp_path / "projects"
    monkeypatch.setattr(storage, "PROJECTS_DIR", str(projects_dir))
    monkeypatch.setattr(config, "ANALYSIS_CONFIG_FILE", str(tmp_path / "analysis_config.json"))
    return tmp_path


def make_items(count: int) -> list[ScaleItem]:
    return [ScaleItem(id=f"item-{i}", text=f"Item {i + 1}") for i in range(count)]


def make_response(name: str, rows: list[list[int | None]], email: str | None = None) -> ExpertResponse:
    """Build an ExpertResponse whose ratings are the given per-item rows."""
    return ExpertResponse(
        expert_id=f"id-{name}",
        expert_name=name,
        expert_email=email or f"{name.lower()}@example.org",
        qualification="PhD",
        years_of_experience="10",
        ratings=RatingTable.from_rows(rows),
    )
