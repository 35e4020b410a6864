"""Kappa Score Collector TUI - project dashboard in the terminal."""

from textual import on
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Vertical, VerticalScroll
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, ListItem, ListView, Markdown, Static

from .api import KappaAPI, ProjectSummary, summarize_analysis

# Default API URL
DEFAULT_API_URL = "http://localhost:8001"

PLACEHOLDER_REPORT = "# Kappa Score Collector\n\nSelect a project to view its report."


class ProjectItem(ListItem):
    """A project item in the sidebar list."""

    def __init__(self, project: ProjectSummary) -> None:
        super().__init__()
        self.project = project

    def compose(self) -> ComposeResult:
        name = self.project.name[:30]
        if len(self.project.name) > 30:
            name += "..."
        yield Label(name, classes="project-name")
        yield Label(
            f"{self.project.type_label} · {self.project.response_count} responses",
            classes="project-meta",
        )


class KappaTUI(App):
    """Kappa Score Collector Terminal User Interface."""

    CSS = """
    #main-container {
        layout: horizontal;
    }

    #sidebar {
        width: 34;
        background: $surface;
        border-right: solid $primary;
        padding: 0 1;
    }

    #sidebar-header {
        height: 3;
        padding: 1;
        background: $primary;
        color: $text;
        text-align: center;
    }

    #project-list {
        height: 1fr;
    }

    #report-area {
        width: 1fr;
        padding: 1;
    }

    #summary {
        height: auto;
        padding: 0 1 1 1;
        color: $accent;
        text-style: bold;
    }

    ProjectItem {
        padding: 1;
    }

    .project-name {
        text-style: bold;
    }

    .project-meta {
        color: $text-muted;
        text-style: italic;
    }
    """

    BINDINGS = [
        Binding("r", "refresh", "Refresh"),
        Binding("ctrl+d", "delete_project", "Delete"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    current_project_id: reactive[str | None] = reactive(None)

    def __init__(self, api_url: str = DEFAULT_API_URL) -> None:
        super().__init__()
        self.api = KappaAPI(api_url)
        self.projects: list[ProjectSummary] = []

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Container(id="main-container"):
            with Vertical(id="sidebar"):
                yield Static("Projects", id="sidebar-header")
                yield ListView(id="project-list")
            with VerticalScroll(id="report-area"):
                yield Static("", id="summary")
                yield Markdown(PLACEHOLDER_REPORT, id="report")
        yield Footer()

    async def on_mount(self) -> None:
        """Load projects when the app mounts."""
        await self.load_projects()

    async def on_unmount(self) -> None:
        await self.api.close()

    async def load_projects(self) -> None:
        """Load projects from the API."""
        try:
            self.projects = await self.api.list_projects()
            list_view = self.query_one("#project-list", ListView)
            await list_view.clear()
            for project in self.projects:
                await list_view.append(ProjectItem(project))
        except Exception as e:
            self.notify(f"Failed to load projects: {e}", severity="error")

    async def load_report(self, project_id: str) -> None:
        """Show a project's headline statistics and Markdown report."""
        try:
            analysis = await self.api.get_analysis(project_id)
            self.query_one("#summary", Static).update(summarize_analysis(analysis))
            report = await self.api.export_markdown(project_id)
            await self.query_one("#report", Markdown).update(report)
        except Exception as e:
            self.notify(f"Failed to load report: {e}", severity="error")

    @on(ListView.Selected, "#project-list")
    async def handle_project_select(self, event: ListView.Selected) -> None:
        if isinstance(event.item, ProjectItem):
            self.current_project_id = event.item.project.id
            await self.load_report(event.item.project.id)

    async def action_refresh(self) -> None:
        """Reload the project list and the open report."""
        await self.load_projects()
        if self.current_project_id:
            await self.load_report(self.current_project_id)

    async def action_delete_project(self) -> None:
        """Delete the selected project."""
        if not self.current_project_id:
            self.notify("No project selected", severity="warning")
            return

        try:
            await self.api.delete_project(self.current_project_id)
            self.current_project_id = None
            self.query_one("#summary", Static).update("")
            await self.query_one("#report", Markdown).update(PLACEHOLDER_REPORT)
            await self.load_projects()
            self.notify("Project deleted", severity="information")
        except Exception as e:
            self.notify(f"Failed to delete project: {e}", severity="error")


def main() -> None:
    """Run the TUI app."""
    import argparse

    parser = argparse.ArgumentParser(description="Kappa Score Collector TUI")
    parser.add_argument(
        "--api-url",
        default=DEFAULT_API_URL,
        help=f"API base URL (default: {DEFAULT_API_URL})",
    )
    args = parser.parse_args()

    app = KappaTUI(api_url=args.api_url)
    app.run()


if __name__ == "__main__":
    main()
