"""
Grouping of merge request review comments.

GitLab returns merge request discussions as threads of notes. Reviewers (and
agents acting on their behalf) mostly care about what is still open, so the
summary view keeps only unresolved notes, splits them into general comments
(``DiscussionNote``) and line comments (``DiffNote``) and groups each kind by
``noteable_id``.

Diff notes of one group share a single position record. It is taken from the
first note of the group and hoisted to the group level; notes of the same
group are assumed to point at the same place. Pass ``strict=True`` to get a
PositionConflictError instead when that assumption does not hold.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Iterator, List, Mapping

from .errors import MalformedInputError, PositionConflictError
from .views import View, describe_record, project_record

DISCUSSION_NOTE = "DiscussionNote"
DIFF_NOTE = "DiffNote"


def _iter_notes(discussions: Iterable[Any]) -> Iterator[Mapping[str, Any]]:
    if not isinstance(discussions, (list, tuple)):
        raise MalformedInputError("discussions", "notes", reason="expected a list of records with")
    for discussion in discussions:
        if not isinstance(discussion, Mapping) or "notes" not in discussion:
            raise MalformedInputError(_label(discussion, "discussion"), "notes")
        notes = discussion["notes"] or ()
        if not isinstance(notes, (list, tuple)):
            raise MalformedInputError(_label(discussion, "discussion"), "notes", reason="expected a list for")
        for note in notes:
            if not isinstance(note, Mapping):
                raise MalformedInputError(_label(discussion, "discussion"), "notes", reason="non-mapping entry in")
            yield note


def _label(record: Any, entity: str) -> str:
    if isinstance(record, Mapping):
        return describe_record(record, entity)
    return f"{entity} (not a mapping)"


def _is_unresolved(note: Mapping[str, Any]) -> bool:
    # Notes without a resolved flag are dropped along with resolved ones.
    return note.get("resolved") is False


def _group_by_noteable(notes: List[Dict[str, Any]]) -> Dict[Any, List[Dict[str, Any]]]:
    groups: Dict[Any, List[Dict[str, Any]]] = {}
    for note in notes:
        try:
            groups.setdefault(note["noteable_id"], []).append(note)
        except TypeError:
            raise MalformedInputError(
                describe_record(note, "note"), "noteable_id", reason="unhashable value for"
            ) from None
    return groups


def _hoist_position(noteable_id: Any, notes: List[Dict[str, Any]], strict: bool) -> Dict[str, Any]:
    position = notes[0].get("position")
    if position is None:
        raise MalformedInputError(describe_record(notes[0], "note"), "position")
    if strict:
        for note in notes[1:]:
            if note.get("position") != position:
                raise PositionConflictError(describe_record(note, "note"), noteable_id)
    return {
        "noteable_id": noteable_id,
        "position": position,
        "notes": [{k: v for k, v in note.items() if k != "position"} for note in notes],
    }


def classify(discussions: Any, verbose: bool = False, strict: bool = False) -> Any:
    """
    Reshape the discussions of one merge request.

    With ``verbose=True`` the input is returned as is. Otherwise the result is::

        {
            "discussionNotes": [{"noteable_id": ..., "notes": [...]}],
            "diffNotes": [{"noteable_id": ..., "position": {...}, "notes": [...]}],
        }

    Groups keep the order in which their noteable_id was first seen; notes
    keep their input order. Raises MalformedInputError for records missing a
    field needed to classify or project them.
    """
    if verbose:
        return discussions

    general: List[Dict[str, Any]] = []
    diff: List[Dict[str, Any]] = []
    for note in _iter_notes(discussions):
        if not _is_unresolved(note):
            continue
        label = describe_record(note, "note")
        if "type" not in note:
            raise MalformedInputError(label, "type")
        kind = note["type"]
        if kind == DISCUSSION_NOTE:
            general.append(project_record(note, "discussion_note", View.SUMMARY, label=label))
        elif kind == DIFF_NOTE:
            diff.append(project_record(note, "diff_note", View.SUMMARY, label=label))
        else:
            raise MalformedInputError(label, "type", reason=f"unrecognized value {kind!r} for")

    return {
        "discussionNotes": [
            {"noteable_id": noteable_id, "notes": notes}
            for noteable_id, notes in _group_by_noteable(general).items()
        ],
        "diffNotes": [
            _hoist_position(noteable_id, notes, strict)
            for noteable_id, notes in _group_by_noteable(diff).items()
        ],
    }
