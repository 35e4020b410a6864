"""Validation of expert submissions before they reach the response store."""

import logging
import uuid
from typing import Any

from .config import (
    DELPHI_MAX_RATING,
    DELPHI_MIN_RATING,
    DELPHI_UNANSWERED,
    criteria_for,
)
from .survey import ExpertResponse, Project, ProjectType, RatingTable

logger = logging.getLogger(__name__)

# Accepted spellings of Face Validity answers
_YES_VALUES = {"yes", "y", "true", "1"}
_NO_VALUES = {"no", "n", "false", "0"}

REQUIRED_EXPERT_FIELDS = (
    "expert_name",
    "expert_email",
    "qualification",
    "years_of_experience",
)


class SubmissionRejected(Exception):
    """An expert submission that cannot be recorded.

    reason is one of "missing_details", "invalid_value", "incomplete" or
    "duplicate".
    """

    def __init__(self, reason: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        result = {"reason": self.reason, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class DuplicateSubmissionError(SubmissionRejected):
    """The email already has a response for this project."""

    def __init__(self, email: str):
        super().__init__(
            "duplicate",
            "You have already submitted a response for this project",
            {"expert_email": email},
        )


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_face_value(value: Any) -> int | None:
    """Map a Yes/No answer to 1/0; None stays unanswered.

    Raises:
        SubmissionRejected: If the value is not a recognisable answer
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int) and value in (0, 1):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _YES_VALUES:
            return 1
        if lowered in _NO_VALUES:
            return 0
    raise SubmissionRejected(
        "invalid_value",
        f"Face validity answers must be Yes or No, got {value!r}",
    )


def normalize_delphi_value(value: Any) -> int | None:
    """Check a Delphi rating is 1-9, or 0 for a deliberately skipped cell.

    Raises:
        SubmissionRejected: If the value is outside the rating scale
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise SubmissionRejected("invalid_value", "Delphi ratings must be numbers")
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError:
            raise SubmissionRejected(
                "invalid_value", f"Delphi rating {value!r} is not a number"
            ) from None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or not (
        value == DELPHI_UNANSWERED or DELPHI_MIN_RATING <= value <= DELPHI_MAX_RATING
    ):
        raise SubmissionRejected(
            "invalid_value",
            f"Delphi ratings must be between {DELPHI_MIN_RATING} and {DELPHI_MAX_RATING}, got {value!r}",
        )
    return value


def build_rating_table(
    ratings: list[list[Any]] | dict[str, Any],
    project_type: ProjectType,
    item_count: int,
    criterion_count: int,
) -> RatingTable:
    """
    Convert a submitted ratings payload into a normalised RatingTable.

    Args:
        ratings: Rows of values per item, or legacy "item{n}_criteria{m}" keys
        project_type: Decides which value domain applies
        item_count: Number of translated items in the project
        criterion_count: Number of rubric criteria

    Returns:
        RatingTable shaped item_count x criterion_count

    Raises:
        SubmissionRejected: On a value outside the domain or a wrong shape
    """
    if isinstance(ratings, dict):
        table = RatingTable.from_keyed(ratings, item_count, criterion_count)
    else:
        if len(ratings) != item_count or any(len(row) != criterion_count for row in ratings):
            raise SubmissionRejected(
                "incomplete",
                f"Ratings must cover {item_count} items x {criterion_count} criteria",
                {"expected_shape": [item_count, criterion_count]},
            )
        table = RatingTable.from_rows(ratings, criterion_count)

    normalize = (
        normalize_face_value
        if project_type == ProjectType.FACE_VALIDITY
        else normalize_delphi_value
    )
    for item_index, criterion_id, value in list(table.cells()):
        table.set(item_index, criterion_id, normalize(value))
    return table


def validate_submission(project: Project, payload: dict[str, Any]) -> ExpertResponse:
    """
    Turn a submission payload into an ExpertResponse for a project.

    Duplicate emails are checked by the store, which owns the response list.

    Args:
        project: Project being rated
        payload: Expert details plus "ratings" and optional "remarks"

    Returns:
        ExpertResponse ready to be recorded

    Raises:
        SubmissionRejected: Missing details, invalid values or an incomplete grid
    """
    missing = [
        name for name in REQUIRED_EXPERT_FIELDS
        if not str(payload.get(name) or "").strip()
    ]
    if missing or payload.get("ratings") is None:
        raise SubmissionRejected(
            "missing_details",
            "All expert details and responses are required",
            {"missing": missing + (["ratings"] if payload.get("ratings") is None else [])},
        )

    if project.item_count == 0:
        raise SubmissionRejected(
            "incomplete", "This project has no items to rate yet"
        )

    criterion_count = len(criteria_for(project.type.value))
    table = build_rating_table(
        payload["ratings"], project.type, project.item_count, criterion_count
    )

    if not table.is_complete(project.item_count, criterion_count):
        missing_cells = table.missing_cells()
        logger.info(
            "Rejected incomplete submission: %d of %d cells unanswered",
            len(missing_cells),
            table.size,
        )
        raise SubmissionRejected(
            "incomplete",
            f"Please answer all items: {len(missing_cells)} of {table.size} cells are unanswered",
            {"missing_cells": [[i, c] for i, c in missing_cells]},
        )

    remarks = payload.get("remarks")
    return ExpertResponse(
        expert_id=uuid.uuid4().hex,
        expert_name=str(payload["expert_name"]).strip(),
        expert_email=str(payload["expert_email"]).strip(),
        qualification=str(payload["qualification"]).strip(),
        years_of_experience=str(payload["years_of_experience"]).strip(),
        ratings=table,
        remarks=remarks.strip() if isinstance(remarks, str) and remarks.strip() else None,
    )
