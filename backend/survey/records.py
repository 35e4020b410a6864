"""Survey data models: projects, scale items, expert responses and ratings."""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator


class ProjectType(str, Enum):
    """Kinds of validation study."""

    DELPHI = "delphi"
    FACE_VALIDITY = "face-validity"


# Legacy keyed cells: "item{n}_criteria{m}" (0-based item) and "C{m}_Q{n}" (1-based item)
_ITEM_CRITERIA_KEY = re.compile(r"^item(\d+)_criteria(\d+)$", re.IGNORECASE)
_CRITERIA_QUESTION_KEY = re.compile(r"^C(\d+)_Q(\d+)$", re.IGNORECASE)


class RatingTable:
    """Fixed-size table of ratings indexed by (item index, criterion id).

    Item indexes start at 0 and criterion ids at 1. A cell holding None
    has not been answered.
    """

    def __init__(self, item_count: int, criterion_count: int) -> None:
        if item_count < 0 or criterion_count < 0:
            raise ValueError("RatingTable dimensions cannot be negative")
        self.item_count = item_count
        self.criterion_count = criterion_count
        self._cells: list[list[int | None]] = [
            [None] * criterion_count for _ in range(item_count)
        ]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RatingTable):
            return NotImplemented
        return self._cells == other._cells and self.shape == other.shape

    def __repr__(self) -> str:
        return f"RatingTable({self.item_count}x{self.criterion_count}, answered={self.answered_count})"

    @property
    def shape(self) -> tuple[int, int]:
        return self.item_count, self.criterion_count

    @property
    def size(self) -> int:
        return self.item_count * self.criterion_count

    @property
    def answered_count(self) -> int:
        return sum(1 for row in self._cells for value in row if value is not None)

    def _check_index(self, item_index: int, criterion_id: int) -> None:
        if not 0 <= item_index < self.item_count:
            raise IndexError(f"Item index {item_index} out of range")
        if not 1 <= criterion_id <= self.criterion_count:
            raise IndexError(f"Criterion id {criterion_id} out of range")

    def get(self, item_index: int, criterion_id: int) -> int | None:
        """Read a cell; cells outside the table read as unanswered."""
        if not 0 <= item_index < self.item_count:
            return None
        if not 1 <= criterion_id <= self.criterion_count:
            return None
        return self._cells[item_index][criterion_id - 1]

    def set(self, item_index: int, criterion_id: int, value: int | None) -> None:
        self._check_index(item_index, criterion_id)
        self._cells[item_index][criterion_id - 1] = value

    def row(self, item_index: int) -> list[int | None]:
        """Copy of one item's ratings ordered by criterion id."""
        if not 0 <= item_index < self.item_count:
            return [None] * self.criterion_count
        return list(self._cells[item_index])

    def cells(self) -> Iterator[tuple[int, int, int | None]]:
        """Yield (item_index, criterion_id, value) in row-major order."""
        for item_index, row in enumerate(self._cells):
            for offset, value in enumerate(row):
                yield item_index, offset + 1, value

    def missing_cells(self) -> list[tuple[int, int]]:
        return [(i, c) for i, c, value in self.cells() if value is None]

    def is_complete(self, item_count: int | None = None, criterion_count: int | None = None) -> bool:
        """True when every cell is answered and the shape matches (if given)."""
        if item_count is not None and item_count != self.item_count:
            return False
        if criterion_count is not None and criterion_count != self.criterion_count:
            return False
        return self.answered_count == self.size

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "item_count": self.item_count,
            "criterion_count": self.criterion_count,
            "cells": [list(row) for row in self._cells],
        }

    @classmethod
    def from_rows(cls, rows: list[list[int | None]], criterion_count: int | None = None) -> "RatingTable":
        """Build from a list of per-item rows; short rows are padded as unanswered."""
        width = criterion_count if criterion_count is not None else max((len(r) for r in rows), default=0)
        table = cls(len(rows), width)
        for item_index, row in enumerate(rows):
            for offset, value in enumerate(row[:width]):
                table._cells[item_index][offset] = value
        return table

    @classmethod
    def from_keyed(
        cls,
        mapping: dict[str, Any],
        item_count: int,
        criterion_count: int,
    ) -> "RatingTable":
        """Build from legacy string-keyed cells.

        Keys outside the table or in an unknown format are ignored.
        """
        table = cls(item_count, criterion_count)
        for key, value in mapping.items():
            match = _ITEM_CRITERIA_KEY.match(key)
            if match:
                item_index, criterion_id = int(match.group(1)), int(match.group(2))
            else:
                match = _CRITERIA_QUESTION_KEY.match(key)
                if not match:
                    continue
                criterion_id, item_index = int(match.group(1)), int(match.group(2)) - 1
            if 0 <= item_index < item_count and 1 <= criterion_id <= criterion_count:
                table._cells[item_index][criterion_id - 1] = value
        return table

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RatingTable":
        """Create from dictionary."""
        return cls.from_rows(data.get("cells", []), data.get("criterion_count"))


@dataclass
class ScaleItem:
    """One statement of a scale."""

    id: str
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "text": self.text}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScaleItem":
        return cls(id=str(data.get("id") or uuid.uuid4().hex), text=data.get("text", ""))


@dataclass
class ExpertResponse:
    """One expert's full submission for a project."""

    expert_id: str
    expert_name: str
    expert_email: str
    qualification: str
    years_of_experience: str
    ratings: RatingTable
    remarks: str | None = None
    submitted_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "expert_id": self.expert_id,
            "expert_name": self.expert_name,
            "expert_email": self.expert_email,
            "qualification": self.qualification,
            "years_of_experience": self.years_of_experience,
            "ratings": self.ratings.to_dict(),
            "submitted_at": self.submitted_at,
        }
        if self.remarks:
            result["remarks"] = self.remarks
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ExpertResponse":
        """Create from dictionary."""
        return cls(
            expert_id=str(data.get("expert_id", "")),
            expert_name=data.get("expert_name", ""),
            expert_email=data.get("expert_email", ""),
            qualification=data.get("qualification", ""),
            years_of_experience=str(data.get("years_of_experience", "")),
            ratings=RatingTable.from_dict(data.get("ratings", {})),
            remarks=data.get("remarks"),
            submitted_at=data.get("submitted_at", ""),
        )


@dataclass
class Project:
    """A validation study with its scales and collected responses."""

    id: str
    name: str
    type: ProjectType
    owner: str
    description: str = ""
    original_scale_items: list[ScaleItem] = field(default_factory=list)
    translated_scale_items: list[ScaleItem] = field(default_factory=list)
    expert_responses: list[ExpertResponse] = field(default_factory=list)
    created_at: str = ""

    @property
    def item_count(self) -> int:
        """Number of items experts rate (the translated scale)."""
        return len(self.translated_scale_items)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "type": self.type.value,
            "owner": self.owner,
            "original_scale_items": [i.to_dict() for i in self.original_scale_items],
            "translated_scale_items": [i.to_dict() for i in self.translated_scale_items],
            "expert_responses": [r.to_dict() for r in self.expert_responses],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        """Create from dictionary."""
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            description=data.get("description", ""),
            type=ProjectType(data.get("type", ProjectType.DELPHI.value)),
            owner=data.get("owner", ""),
            original_scale_items=[
                ScaleItem.from_dict(i) for i in data.get("original_scale_items", [])
            ],
            translated_scale_items=[
                ScaleItem.from_dict(i) for i in data.get("translated_scale_items", [])
            ],
            expert_responses=[
                ExpertResponse.from_dict(r) for r in data.get("expert_responses", [])
            ],
            created_at=data.get("created_at", ""),
        )
