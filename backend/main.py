"""FastAPI backend for the Kappa Score Collector."""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel, Field

from . import config, storage
from .agreement import analyze_project
from .auth import AUTH_ENABLED, User, get_optional_user, require_owner
from .config import (
    APP_NAME,
    APP_VERSION,
    DELPHI_CRITERIA,
    FACE_VALIDITY_CRITERIA,
    PROJECT_TYPES,
    criteria_for,
    get_analysis_settings,
    reload_config,
    update_analysis_settings,
)
from .documents import DocumentParseError, parse_document, validate_item_count
from .export import export_to_docx, export_to_json, export_to_markdown, report_filename
from .logging_config import (
    set_correlation_id,
    set_current_project,
    set_current_user,
    setup_logging,
)
from .submissions import SubmissionRejected, validate_submission
from .survey import Project

logger = logging.getLogger(__name__)

# Status code per submission rejection reason
SUBMISSION_STATUS = {
    "missing_details": 400,
    "invalid_value": 422,
    "incomplete": 409,
    "duplicate": 409,
}

DOCX_MEDIA_TYPE = (
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    storage.ensure_projects_dir()
    logger.info("%s %s started (auth enabled: %s)", APP_NAME, APP_VERSION, AUTH_ENABLED)
    yield


app = FastAPI(title="Kappa Score Collector API", version=APP_VERSION, lifespan=lifespan)

# Enable CORS for local development (when running frontend separately)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Bind a correlation id and the proxy user to the request's log records."""
    correlation_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
    set_correlation_id(correlation_id)
    set_current_user(request.headers.get("Remote-User"))
    set_current_project(None)
    try:
        response = await call_next(request)
    finally:
        set_correlation_id(None)
        set_current_user(None)
        set_current_project(None)
    response.headers["X-Request-ID"] = correlation_id
    return response


class CreateProjectRequest(BaseModel):
    """Request to create a new project."""
    name: str = Field(min_length=1)
    type: str = Field(default="delphi", pattern="^(delphi|face-validity)$")
    description: str = ""


class UpdateItemsRequest(BaseModel):
    """Request to replace a project's item lists."""
    original_items: Optional[List[str]] = None
    translated_items: Optional[List[str]] = None


class UpdateAnalysisRequest(BaseModel):
    """Request to change analysis thresholds."""
    retention_threshold: Optional[int] = None
    delphi_low_max: Optional[int] = None
    delphi_medium_max: Optional[int] = None
    relevance_threshold: Optional[int] = None
    consensus_min_mean: Optional[float] = None
    consensus_max_sd: Optional[float] = None


class SubmissionRequest(BaseModel):
    """An expert's rating form.

    Fields are optional here so missing details are reported by intake
    validation with a reason rather than as a schema error.
    """
    expert_name: Optional[str] = None
    expert_email: Optional[str] = None
    qualification: Optional[str] = None
    years_of_experience: Optional[Union[str, int, float]] = None
    ratings: Optional[Union[List[List[Any]], Dict[str, Any]]] = None
    remarks: Optional[str] = None


class ProjectMetadata(BaseModel):
    """Project metadata for list view."""
    id: str
    name: str
    description: str
    type: str
    created_at: str
    item_count: int
    response_count: int


def _load_owned_project(project_id: str, user: User) -> Dict[str, Any]:
    """Load a project the user owns, or raise 404/403."""
    set_current_project(project_id)
    project = storage.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    if project.get("owner") != user.username:
        logger.warning("User %s denied access to project %s", user.username, project_id)
        raise HTTPException(status_code=403, detail="Not the owner of this project")
    return project


def _analyze(project_data: Dict[str, Any]):
    project = Project.from_dict(project_data)
    return project, analyze_project(project, get_analysis_settings())


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "Kappa Score Collector API"}


@app.get("/api/config")
async def get_config():
    """Get criteria, analysis settings and feature flags."""
    return {
        "version": APP_VERSION,
        "project_types": list(PROJECT_TYPES),
        "criteria": {
            "face-validity": FACE_VALIDITY_CRITERIA,
            "delphi": DELPHI_CRITERIA,
        },
        "analysis": get_analysis_settings().to_dict(),
        "max_upload_mb": config.MAX_UPLOAD_MB,
        "expected_item_count": config.EXPECTED_ITEM_COUNT,
        "auth_enabled": AUTH_ENABLED,
    }


@app.post("/api/config/analysis")
async def update_analysis_config(
    request: UpdateAnalysisRequest,
    user: User = Depends(require_owner),
):
    """Update analysis thresholds."""
    try:
        settings = update_analysis_settings(**request.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "ok", "analysis": settings.to_dict()}


@app.post("/api/config/reload")
async def reload_config_endpoint(user: User = Depends(require_owner)):
    """Reload configuration from .env and the analysis settings file."""
    return reload_config()


@app.get("/api/user")
async def get_user_info(user: Optional[User] = Depends(get_optional_user)):
    """Get current user information from auth headers."""
    if not user:
        return {"authenticated": False}
    return {
        "authenticated": True,
        "username": user.username,
        "email": user.email,
        "display_name": user.display_name,
        "groups": user.groups,
    }


@app.get("/api/projects", response_model=List[ProjectMetadata])
async def list_projects(user: User = Depends(require_owner)):
    """List the caller's projects (metadata only)."""
    return storage.list_projects(owner=user.username)


@app.post("/api/projects", status_code=201)
async def create_project(
    request: CreateProjectRequest,
    user: User = Depends(require_owner),
):
    """Create a new, empty project."""
    return storage.create_project(
        request.name.strip(),
        owner=user.username,
        project_type=request.type,
        description=request.description,
    )


@app.get("/api/projects/{project_id}")
async def get_project(project_id: str):
    """Expert view of a project: what to rate and against which criteria."""
    set_current_project(project_id)
    project = storage.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return {
        "id": project["id"],
        "name": project.get("name", ""),
        "description": project.get("description", ""),
        "type": project.get("type", "delphi"),
        "translated_scale_items": project.get("translated_scale_items", []),
        "criteria": criteria_for(project.get("type", "delphi")),
    }


@app.delete("/api/projects/{project_id}")
async def delete_project(project_id: str, user: User = Depends(require_owner)):
    """Delete a project and all its responses."""
    _load_owned_project(project_id, user)
    storage.delete_project(project_id)
    return {"status": "ok", "id": project_id}


@app.put("/api/projects/{project_id}/items")
async def update_items(
    project_id: str,
    request: UpdateItemsRequest,
    user: User = Depends(require_owner),
):
    """Replace the original and/or translated item lists."""
    _load_owned_project(project_id, user)
    try:
        project = storage.update_scale_items(
            project_id,
            original_items=request.original_items,
            translated_items=request.translated_items,
        )
    except storage.ScaleLockedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {
        "status": "ok",
        "original_scale_items": project["original_scale_items"],
        "translated_scale_items": project["translated_scale_items"],
    }


@app.get("/api/projects/{project_id}/scales")
async def get_scales(project_id: str, user: User = Depends(require_owner)):
    """Get metadata of the uploaded original and translated scale documents."""
    project = _load_owned_project(project_id, user)
    return {
        "original": project.get("original_scale"),
        "translated": project.get("translated_scale"),
    }


@app.post("/api/documents/parse")
async def parse_scale_document(
    file: UploadFile = File(...),
    project_id: Optional[str] = Form(None),
    scale_type: Optional[str] = Form(None),
    user: User = Depends(require_owner),
):
    """Upload a scale document and extract its items.

    Supported file types: .txt, .pdf, .docx. With a project_id and a
    scale_type ("original" or "translated") the result is stored on the
    project as scale metadata.
    """
    content = await file.read()
    filename = file.filename or "unnamed"

    try:
        parsed = parse_document(filename, content)
    except DocumentParseError as e:
        raise HTTPException(status_code=400, detail={"kind": e.kind, "message": e.message})

    result = parsed.to_dict()
    result["validation"] = validate_item_count(parsed.item_count)

    if project_id:
        if scale_type not in ("original", "translated"):
            raise HTTPException(
                status_code=400, detail="scale_type must be 'original' or 'translated'"
            )
        _load_owned_project(project_id, user)
        storage.set_uploaded_scale(project_id, scale_type, {
            "filename": parsed.filename,
            "language": parsed.language,
            "items": parsed.items,
            "item_count": parsed.item_count,
            "uploaded_at": datetime.now(timezone.utc).isoformat(),
            "uploaded_by": user.username,
        })

    return result


@app.post("/api/projects/{project_id}/responses", status_code=201)
async def submit_response(project_id: str, request: SubmissionRequest):
    """Record one expert's ratings.

    The duplicate check and the write run without yielding to the event
    loop, so concurrent submissions for one email cannot both be stored.
    """
    set_current_project(project_id)
    project_data = storage.get_project(project_id)
    if project_data is None:
        raise HTTPException(status_code=404, detail="Project not found")

    try:
        response = validate_submission(
            Project.from_dict(project_data), request.model_dump()
        )
        storage.add_expert_response(project_id, response)
    except SubmissionRejected as e:
        raise HTTPException(status_code=SUBMISSION_STATUS[e.reason], detail=e.to_dict())
    except storage.ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")

    return {"status": "ok", "expert_id": response.expert_id}


@app.get("/api/projects/{project_id}/responses")
async def list_responses(project_id: str, user: User = Depends(require_owner)):
    """List all submissions of a project."""
    project = _load_owned_project(project_id, user)
    return project.get("expert_responses", [])


@app.get("/api/projects/{project_id}/analysis")
async def get_analysis(project_id: str, user: User = Depends(require_owner)):
    """Run the agreement calculator on the project's current responses."""
    project_data = _load_owned_project(project_id, user)
    _, analysis = _analyze(project_data)
    return analysis.to_dict()


@app.get("/api/projects/{project_id}/export/markdown")
async def export_project_markdown(project_id: str, user: User = Depends(require_owner)):
    """Export a project's analysis as Markdown."""
    project, analysis = _analyze(_load_owned_project(project_id, user))
    markdown_content = export_to_markdown(project, analysis)

    return StreamingResponse(
        iter([markdown_content]),
        media_type="text/markdown",
        headers={
            "Content-Disposition": f'attachment; filename="{report_filename(project, "md")}"'
        },
    )


@app.get("/api/projects/{project_id}/export/json")
async def export_project_json(project_id: str, user: User = Depends(require_owner)):
    """Export a project with its analysis as JSON."""
    project, analysis = _analyze(_load_owned_project(project_id, user))
    json_content = export_to_json(project, analysis)

    return StreamingResponse(
        iter([json.dumps(json_content, indent=2, ensure_ascii=False)]),
        media_type="application/json",
        headers={
            "Content-Disposition": f'attachment; filename="{report_filename(project, "json")}"'
        },
    )


@app.get("/api/projects/{project_id}/export/docx")
async def export_project_docx(project_id: str, user: User = Depends(require_owner)):
    """Export a project's analysis as a Word report."""
    project, analysis = _analyze(_load_owned_project(project_id, user))
    content = export_to_docx(project, analysis)

    return Response(
        content=content,
        media_type=DOCX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{report_filename(project, "docx")}"'
        },
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
