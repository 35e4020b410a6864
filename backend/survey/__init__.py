"""Survey data models shared by storage, intake and analysis."""

from .records import (
    ExpertResponse,
    Project,
    ProjectType,
    RatingTable,
    ScaleItem,
)

__all__ = [
    "ExpertResponse",
    "Project",
    "ProjectType",
    "RatingTable",
    "ScaleItem",
]
