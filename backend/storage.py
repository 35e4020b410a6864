"""JSON-based storage for projects and their expert responses."""

import json
import logging
import os
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import PROJECTS_DIR, PROJECT_TYPES
from .submissions import DuplicateSubmissionError, normalize_email
from .survey import ExpertResponse

logger = logging.getLogger(__name__)


class ProjectNotFoundError(ValueError):
    """Raised when a project id has no stored file."""

    def __init__(self, project_id: str):
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class ScaleLockedError(ValueError):
    """Raised when translated items would change after experts have rated them."""

    def __init__(self, project_id: str, response_count: int):
        super().__init__(
            f"Translated items of project {project_id} are locked: "
            f"{response_count} expert responses already rate them"
        )
        self.project_id = project_id
        self.response_count = response_count


def get_projects_dir() -> str:
    """Get the directory holding project files."""
    return PROJECTS_DIR


def ensure_projects_dir() -> None:
    """Ensure the projects directory exists."""
    Path(get_projects_dir()).mkdir(parents=True, exist_ok=True)


def get_project_path(project_id: str) -> str:
    """Get the file path for a project.

    Args:
        project_id: Unique project identifier

    Returns:
        Full path to the project JSON file
    """
    # Ids are uuid hex; refuse anything that could escape the directory
    if not project_id or os.path.basename(project_id) != project_id or project_id.startswith("."):
        raise ProjectNotFoundError(project_id)
    return os.path.join(get_projects_dir(), f"{project_id}.json")


def _make_items(texts: List[str]) -> List[Dict[str, Any]]:
    return [{"id": uuid.uuid4().hex, "text": text} for text in texts]


def _extract_project_metadata(data: Dict[str, Any]) -> Dict[str, Any]:
    """Summary fields for list views, without items or responses."""
    return {
        "id": data["id"],
        "name": data.get("name", ""),
        "description": data.get("description", ""),
        "type": data.get("type", "delphi"),
        "created_at": data.get("created_at", ""),
        "item_count": len(data.get("translated_scale_items", [])),
        "response_count": len(data.get("expert_responses", [])),
    }


def create_project(
    name: str,
    owner: str,
    project_type: str = "delphi",
    description: str = "",
) -> Dict[str, Any]:
    """Create a new, empty project.

    Args:
        name: Display name
        owner: Username of the creating user
        project_type: "delphi" or "face-validity"
        description: Optional free text

    Returns:
        New project dict
    """
    if project_type not in PROJECT_TYPES:
        raise ValueError(f"Unknown project type: {project_type}")

    project = {
        "id": uuid.uuid4().hex,
        "name": name,
        "description": description,
        "type": project_type,
        "owner": owner,
        "original_scale_items": [],
        "translated_scale_items": [],
        "expert_responses": [],
        "created_at": datetime.now(timezone.utc).isoformat(),
    }

    save_project(project)
    logger.info("Created %s project %s for %s", project_type, project["id"], owner)
    return project


def get_project(project_id: str) -> Optional[Dict[str, Any]]:
    """Load a project from storage.

    Args:
        project_id: Unique identifier for the project

    Returns:
        Project dict or None if not found
    """
    try:
        path = get_project_path(project_id)
    except ProjectNotFoundError:
        return None

    if not os.path.exists(path):
        return None

    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def require_project(project_id: str) -> Dict[str, Any]:
    """Load a project or raise ProjectNotFoundError."""
    project = get_project(project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    return project


def save_project(project: Dict[str, Any]) -> None:
    """Save a project to storage.

    Args:
        project: Project dict to save
    """
    ensure_projects_dir()

    path = get_project_path(project["id"])
    with open(path, "w", encoding="utf-8") as f:
        json.dump(project, f, indent=2, ensure_ascii=False)


def delete_project(project_id: str) -> bool:
    """Delete a project file.

    Returns:
        True if a file was removed, False if it did not exist
    """
    try:
        path = get_project_path(project_id)
    except ProjectNotFoundError:
        return False

    if not os.path.exists(path):
        return False

    os.remove(path)
    logger.info("Deleted project %s", project_id)
    return True


def list_projects(owner: Optional[str] = None) -> List[Dict[str, Any]]:
    """List projects (metadata only).

    Args:
        owner: Only include projects owned by this user; None for all

    Returns:
        List of project metadata dicts, newest first
    """
    ensure_projects_dir()
    projects_dir = get_projects_dir()

    projects = []
    for filename in os.listdir(projects_dir):
        if not filename.endswith(".json"):
            continue
        path = os.path.join(projects_dir, filename)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Skipping unreadable project file %s: %s", path, e)
            continue
        if owner is not None and data.get("owner") != owner:
            continue
        projects.append(_extract_project_metadata(data))

    projects.sort(key=lambda x: x["created_at"], reverse=True)
    return projects


def update_scale_items(
    project_id: str,
    original_items: Optional[List[str]] = None,
    translated_items: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Replace a project's original and/or translated item lists.

    Args:
        project_id: Project identifier
        original_items: New original item texts (None to keep current)
        translated_items: New translated item texts (None to keep current)

    Returns:
        Updated project dict

    Raises:
        ScaleLockedError: If translated items change once responses exist
    """
    project = require_project(project_id)

    responses = project.get("expert_responses") or []
    if translated_items is not None and responses:
        logger.warning(
            "Refused to change translated items of project %s with %d responses",
            project_id,
            len(responses),
        )
        raise ScaleLockedError(project_id, len(responses))

    if original_items is not None:
        project["original_scale_items"] = _make_items(original_items)
    if translated_items is not None:
        project["translated_scale_items"] = _make_items(translated_items)

    save_project(project)
    return project


def set_uploaded_scale(
    project_id: str, scale_type: str, scale: Dict[str, Any]
) -> Dict[str, Any]:
    """Store metadata of a parsed scale document on a project.

    Args:
        project_id: Project identifier
        scale_type: "original" or "translated"
        scale: Filename, language, items and upload details

    Returns:
        Updated project dict
    """
    if scale_type not in ("original", "translated"):
        raise ValueError(f"Unknown scale type: {scale_type}")

    project = require_project(project_id)
    project[f"{scale_type}_scale"] = scale
    save_project(project)
    return project


def has_response_from(project: Dict[str, Any], email: str) -> bool:
    """Check whether an email already submitted to a project."""
    wanted = normalize_email(email)
    return any(
        normalize_email(r.get("expert_email", "")) == wanted
        for r in project.get("expert_responses", [])
    )


def add_expert_response(project_id: str, response: ExpertResponse) -> Dict[str, Any]:
    """Record one expert's submission.

    Args:
        project_id: Project identifier
        response: Validated submission

    Returns:
        The stored response dict

    Raises:
        ProjectNotFoundError: If the project does not exist
        DuplicateSubmissionError: If the email already has a response
    """
    project = require_project(project_id)

    if has_response_from(project, response.expert_email):
        logger.info("Rejected duplicate submission for project %s", project_id)
        raise DuplicateSubmissionError(response.expert_email)

    stored = response.to_dict()
    project.setdefault("expert_responses", []).append(stored)
    save_project(project)

    logger.info(
        "Recorded response %s for project %s (%d total)",
        response.expert_id,
        project_id,
        len(project["expert_responses"]),
    )
    return stored


def list_expert_responses(project_id: str) -> List[Dict[str, Any]]:
    """Get all recorded responses of a project."""
    return require_project(project_id).get("expert_responses", [])
