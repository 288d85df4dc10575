"""
Response views for GitLab records.

Each tool can answer in one of two views:

- ``raw``: the GitLab payload exactly as the API returned it
- ``summary``: a projection onto the fields declared in SUMMARY_FIELDS

Tools never shape records themselves; all projections live in SUMMARY_FIELDS.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import MalformedInputError

_MISSING = object()


class View(str, Enum):
    RAW = "raw"
    SUMMARY = "summary"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    source: Optional[str] = None
    required: bool = False

    @property
    def path(self) -> Tuple[str, ...]:
        return tuple((self.source or self.name).split("."))


def _fields(*names: str, required: bool = False) -> Tuple[FieldSpec, ...]:
    return tuple(FieldSpec(name, required=required) for name in names)


_NOTE_FIELDS = _fields("id", "noteable_id", "body", required=True) + (
    FieldSpec("author", source="author.name", required=True),
)

SUMMARY_FIELDS: Dict[str, Tuple[FieldSpec, ...]] = {
    "project": _fields(
        "id", "name", "path_with_namespace", "description", "default_branch", "web_url"
    ),
    "merge_request": _fields("iid", "title", "description", "state")
    + (FieldSpec("author", source="author.name"),)
    + _fields("source_branch", "target_branch", "merge_status", "web_url"),
    "issue": _fields("iid", "title", "description", "state", "labels")
    + (FieldSpec("author", source="author.name"),)
    + _fields("web_url"),
    "discussion_note": _NOTE_FIELDS,
    # Only the first note of a diff group must carry a position; see comments.py.
    "diff_note": _NOTE_FIELDS + (FieldSpec("position"),),
}


def view_for(verbose: bool) -> View:
    return View.RAW if verbose else View.SUMMARY


def describe_record(record: Mapping[str, Any], entity: str) -> str:
    """Human-readable label used in MalformedInputError messages."""
    ident = record.get("id", record.get("iid")) if isinstance(record, Mapping) else None
    label = entity.replace("_", " ")
    return f"{label} {ident}" if ident is not None else f"{label} (no id)"


def _resolve(record: Mapping[str, Any], path: Tuple[str, ...]) -> Any:
    value: Any = record
    for key in path:
        if not isinstance(value, Mapping) or key not in value:
            return _MISSING
        value = value[key]
    return value


def project_record(
    record: Any,
    entity: str,
    view: View = View.SUMMARY,
    label: Optional[str] = None,
) -> Any:
    """
    Project a single GitLab record onto the fields of ``view``.

    Raw view returns ``record`` itself. Missing optional fields become None;
    a missing required field raises MalformedInputError naming the record and
    the dotted field path.
    """
    if view is View.RAW:
        return record
    try:
        fields = SUMMARY_FIELDS[entity]
    except KeyError:
        raise ValueError(f"Unknown entity type '{entity}'") from None
    if not isinstance(record, Mapping):
        raise MalformedInputError(label or entity.replace("_", " "), "record", reason="expected a mapping for")

    projected: Dict[str, Any] = {}
    for spec in fields:
        value = _resolve(record, spec.path)
        if value is _MISSING:
            if spec.required:
                raise MalformedInputError(label or describe_record(record, entity), ".".join(spec.path))
            value = None
        projected[spec.name] = value
    return projected


def project_records(records: Any, entity: str, view: View = View.SUMMARY) -> Any:
    if view is View.RAW:
        return records
    return [project_record(record, entity, view) for record in records]
