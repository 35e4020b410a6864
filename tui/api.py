"""API client for the Kappa Score Collector TUI."""

from dataclasses import dataclass
from typing import Any

import httpx


@dataclass
class ProjectSummary:
    """A project as shown in the sidebar."""

    id: str
    name: str
    type: str
    created_at: str
    item_count: int
    response_count: int

    @property
    def type_label(self) -> str:
        return "Face Validity" if self.type == "face-validity" else "Delphi"


def summarize_analysis(analysis: dict[str, Any]) -> str:
    """One-line headline of an analysis for the report pane."""
    panel = f"{analysis.get('expert_count', 0)} experts · {analysis.get('item_count', 0)} items"
    if analysis.get("mode") == "face-validity":
        return (
            f"{panel} · agreement {analysis.get('overall_agreement', 0.0)}% · "
            f"kappa {analysis.get('cohens_kappa', 'N/A')} "
            f"({analysis.get('kappa_interpretation', 'N/A')})"
        )
    mean_correlation = analysis.get("mean_correlation")
    correlation = "N/A" if mean_correlation is None else mean_correlation
    retained = sum(1 for item in analysis.get("items", []) if item.get("status") == "RETAINED")
    return f"{panel} · {retained} retained · mean r {correlation}"


class KappaAPI:
    """Client for the Kappa Score Collector API."""

    def __init__(
        self,
        base_url: str = "http://localhost:8001",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.client = httpx.AsyncClient(base_url=base_url, timeout=30.0, transport=transport)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def list_projects(self) -> list[ProjectSummary]:
        """List the caller's projects."""
        response = await self.client.get("/api/projects")
        response.raise_for_status()
        return [
            ProjectSummary(
                id=p["id"],
                name=p.get("name", "Untitled project"),
                type=p.get("type", "delphi"),
                created_at=p.get("created_at", ""),
                item_count=p.get("item_count", 0),
                response_count=p.get("response_count", 0),
            )
            for p in response.json()
        ]

    async def get_analysis(self, project_id: str) -> dict[str, Any]:
        """Get the calculator output for a project."""
        response = await self.client.get(f"/api/projects/{project_id}/analysis")
        response.raise_for_status()
        return response.json()

    async def export_markdown(self, project_id: str) -> str:
        """Get a project's Markdown report."""
        response = await self.client.get(f"/api/projects/{project_id}/export/markdown")
        response.raise_for_status()
        return response.text

    async def delete_project(self, project_id: str) -> None:
        """Delete a project."""
        response = await self.client.delete(f"/api/projects/{project_id}")
        response.raise_for_status()
