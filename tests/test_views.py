from __future__ import annotations

import pytest

from gitlab_review_mcp.errors import MalformedInputError
from gitlab_review_mcp.views import SUMMARY_FIELDS, View, project_record, project_records, view_for


MERGE_REQUEST = {
    "id": 5001,
    "iid": 12,
    "title": "Add review tooling",
    "description": "Adds the thing",
    "state": "opened",
    "author": {"id": 3, "name": "Alice Example", "username": "alice"},
    "source_branch": "feature/review",
    "target_branch": "main",
    "merge_status": "can_be_merged",
    "web_url": "https://gitlab.example.com/group/project/-/merge_requests/12",
    "diff_refs": {"base_sha": "a", "head_sha": "c", "start_sha": "b"},
}


def test_view_for_maps_verbose_flag():
    assert view_for(True) is View.RAW
    assert view_for(False) is View.SUMMARY


def test_raw_view_is_identity():
    assert project_record(MERGE_REQUEST, "merge_request", View.RAW) is MERGE_REQUEST
    records = [MERGE_REQUEST]
    assert project_records(records, "merge_request", View.RAW) is records


def test_summary_view_projects_declared_fields():
    summary = project_record(MERGE_REQUEST, "merge_request")
    assert list(summary) == [spec.name for spec in SUMMARY_FIELDS["merge_request"]]
    assert summary["author"] == "Alice Example"
    assert summary["iid"] == 12
    assert "diff_refs" not in summary


def test_missing_optional_field_becomes_none():
    summary = project_record({"iid": 3, "title": "Bug"}, "issue")
    assert summary["title"] == "Bug"
    assert summary["author"] is None
    assert summary["labels"] is None


def test_missing_required_field_raises():
    with pytest.raises(MalformedInputError) as excinfo:
        project_record({"id": 1, "noteable_id": 2, "author": {"name": "A"}}, "discussion_note")
    assert excinfo.value.field == "body"
    assert "discussion note 1" in str(excinfo.value)


def test_non_mapping_record_raises():
    with pytest.raises(MalformedInputError):
        project_record(["not", "a", "dict"], "project")


def test_unknown_entity_raises_value_error():
    with pytest.raises(ValueError):
        project_record({}, "pipeline")


def test_project_records_maps_every_record():
    projects = [
        {"id": 1, "name": "one", "path_with_namespace": "g/one", "visibility": "private"},
        {"id": 2, "name": "two", "path_with_namespace": "g/two", "visibility": "public"},
    ]
    summaries = project_records(projects, "project")
    assert [p["path_with_namespace"] for p in summaries] == ["g/one", "g/two"]
    assert all("visibility" not in p for p in summaries)
