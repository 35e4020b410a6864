"""Tests for backend.storage."""

import json
import os

import pytest

from backend import storage
from backend.storage import ProjectNotFoundError, ScaleLockedError, _extract_project_metadata
from backend.submissions import DuplicateSubmissionError

from conftest import make_response


# ---------------------------------------------------------------------------
# _extract_project_metadata
# ---------------------------------------------------------------------------

class TestExtractProjectMetadata:
    """Tests for _extract_project_metadata."""

    def test_normal_project(self):
        data = {
            "id": "p-123",
            "name": "Burnout scale",
            "description": "Sinhala translation",
            "type": "face-validity",
            "created_at": "2026-01-15T10:00:00",
            "translated_scale_items": [{"id": "a", "text": "x"}, {"id": "b", "text": "y"}],
            "expert_responses": [{"expert_email": "a@b.org"}],
        }
        assert _extract_project_metadata(data) == {
            "id": "p-123",
            "name": "Burnout scale",
            "description": "Sinhala translation",
            "type": "face-validity",
            "created_at": "2026-01-15T10:00:00",
            "item_count": 2,
            "response_count": 1,
        }

    def test_missing_fields_default(self):
        result = _extract_project_metadata({"id": "p-456"})
        assert result["type"] == "delphi"
        assert result["item_count"] == 0
        assert result["response_count"] == 0


# ---------------------------------------------------------------------------
# Project files
# ---------------------------------------------------------------------------

class TestProjectStore:
    """Tests for project CRUD against a temporary directory."""

    def test_create_and_get(self, data_dir):
        project = storage.create_project("Study", owner="alice", project_type="face-validity")
        loaded = storage.get_project(project["id"])
        assert loaded == project
        assert loaded["expert_responses"] == []
        assert os.path.exists(data_dir / "projects" / f"{project['id']}.json")

    def test_unknown_type_rejected(self, data_dir):
        with pytest.raises(ValueError):
            storage.create_project("Study", owner="alice", project_type="survey")

    def test_get_missing_returns_none(self, data_dir):
        assert storage.get_project("does-not-exist") is None

    def test_path_traversal_rejected(self, data_dir):
        with pytest.raises(ProjectNotFoundError):
            storage.get_project_path("../secrets")
        assert storage.get_project("../secrets") is None

    def test_require_project_raises(self, data_dir):
        with pytest.raises(ProjectNotFoundError):
            storage.require_project("nope")

    def test_list_filters_by_owner(self, data_dir):
        storage.create_project("Mine", owner="alice")
        storage.create_project("Theirs", owner="bob")
        names = [p["name"] for p in storage.list_projects(owner="alice")]
        assert names == ["Mine"]
        assert len(storage.list_projects()) == 2

    def test_list_skips_unreadable_files(self, data_dir):
        storage.create_project("Good", owner="alice")
        (data_dir / "projects" / "broken.json").write_text("{not json")
        assert [p["name"] for p in storage.list_projects()] == ["Good"]

    def test_delete(self, data_dir):
        project = storage.create_project("Study", owner="alice")
        assert storage.delete_project(project["id"]) is True
        assert storage.delete_project(project["id"]) is False
        assert storage.get_project(project["id"]) is None

    def test_update_scale_items(self, data_dir):
        project = storage.create_project("Study", owner="alice")
        updated = storage.update_scale_items(
            project["id"], original_items=["I feel tired"], translated_items=["මම", "දැඩි"]
        )
        assert [i["text"] for i in updated["original_scale_items"]] == ["I feel tired"]
        assert len(updated["translated_scale_items"]) == 2
        with open(data_dir / "projects" / f"{project['id']}.json", encoding="utf-8") as f:
            assert "මම" in f.read()

    def test_update_keeps_unspecified_list(self, data_dir):
        project = storage.create_project("Study", owner="alice")
        storage.update_scale_items(project["id"], original_items=["a"])
        updated = storage.update_scale_items(project["id"], translated_items=["b"])
        assert [i["text"] for i in updated["original_scale_items"]] == ["a"]

    def test_translated_items_locked_after_responses(self, data_dir):
        project = storage.create_project("Study", owner="alice")
        storage.update_scale_items(project["id"], translated_items=["Item 1"])
        storage.add_expert_response(project["id"], make_response("A", [[1] * 10]))
        with pytest.raises(ScaleLockedError) as exc_info:
            storage.update_scale_items(project["id"], translated_items=["Item 1", "Item 2"])
        assert exc_info.value.response_count == 1
        stored = storage.get_project(project["id"])
        assert [i["text"] for i in stored["translated_scale_items"]] == ["Item 1"]

    def test_original_items_editable_after_responses(self, data_dir):
        project = storage.create_project("Study", owner="alice")
        storage.update_scale_items(project["id"], translated_items=["Item 1"])
        storage.add_expert_response(project["id"], make_response("A", [[1] * 10]))
        updated = storage.update_scale_items(project["id"], original_items=["Source 1"])
        assert [i["text"] for i in updated["original_scale_items"]] == ["Source 1"]

    def test_set_uploaded_scale(self, data_dir):
        project = storage.create_project("Study", owner="alice")
        storage.set_uploaded_scale(project["id"], "original", {"filename": "scale.txt"})
        assert storage.get_project(project["id"])["original_scale"] == {"filename": "scale.txt"}
        with pytest.raises(ValueError):
            storage.set_uploaded_scale(project["id"], "draft", {})


# ---------------------------------------------------------------------------
# Expert responses
# ---------------------------------------------------------------------------

class TestExpertResponses:
    """Tests for recording responses."""

    def test_add_and_list(self, data_dir):
        project = storage.create_project("Study", owner="alice")
        stored = storage.add_expert_response(project["id"], make_response("A", [[8] * 5]))
        assert stored["expert_name"] == "A"
        responses = storage.list_expert_responses(project["id"])
        assert len(responses) == 1
        assert responses[0]["ratings"]["cells"] == [[8] * 5]

    def test_duplicate_email_case_insensitive(self, data_dir):
        project = storage.create_project("Study", owner="alice")
        storage.add_expert_response(
            project["id"], make_response("A", [[8] * 5], email="expert@example.org")
        )
        with pytest.raises(DuplicateSubmissionError):
            storage.add_expert_response(
                project["id"], make_response("B", [[7] * 5], email=" Expert@Example.org")
            )
        assert len(storage.list_expert_responses(project["id"])) == 1

    def test_missing_project(self, data_dir):
        with pytest.raises(ProjectNotFoundError):
            storage.add_expert_response("nope", make_response("A", [[8] * 5]))

    def test_stored_file_is_json(self, data_dir):
        project = storage.create_project("Study", owner="alice")
        storage.add_expert_response(project["id"], make_response("A", [[8] * 5]))
        with open(storage.get_project_path(project["id"])) as f:
            assert json.load(f)["expert_responses"][0]["expert_id"] == "id-A"
