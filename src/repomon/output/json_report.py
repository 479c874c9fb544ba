"""JSON rendering of snapshots and registry events — the push-channel payload."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional

from repomon.git.diff_parser import parse_diff
from repomon.git.models import Snapshot
from repomon.registry import RegistryEvent, RepositoriesEvent, RepoSummary, SnapshotEvent


def snapshot_to_dict(snapshot: Optional[Snapshot], *, include_diff: bool = True) -> Optional[Dict[str, Any]]:
    """Convert a Snapshot to a JSON-serialisable dict (None stays None)."""
    if snapshot is None:
        return None
    if snapshot.is_error:
        return {"repositoryId": snapshot.repository_id, "error": snapshot.error}

    files: List[Dict[str, Any]] = []
    additions = deletions = 0
    for change in snapshot.files:
        parsed = parse_diff(change.diff_text)
        stats = parsed.stats if parsed is not None else None
        if stats is not None:
            additions += stats.additions
            deletions += stats.deletions
        files.append({
            "file": change.relative_path,
            "status": change.classification.value,
            **({"diff": change.diff_text} if include_diff else {}),
            "additions": stats.additions if stats else 0,
            "deletions": stats.deletions if stats else 0,
            "firstChangedLine": parsed.first_changed_line if parsed else None,
            **({"failureReason": change.failure_reason} if change.failure_reason else {}),
        })

    return {
        "repositoryId": snapshot.repository_id,
        "branch": snapshot.branch,
        "computedAt": snapshot.computed_at.isoformat(),
        "files": files,
        "stats": {"additions": additions, "deletions": deletions},
    }


def summary_to_dict(summary: RepoSummary) -> Dict[str, Any]:
    return {
        "id": summary.id,
        "name": summary.display_name,
        "branch": summary.branch,
        "additions": summary.additions,
        "deletions": summary.deletions,
        "changedFiles": summary.changed_files,
        "watchState": summary.watch_state.value,
        "isCurrent": summary.is_current,
        **({"error": summary.error} if summary.error else {}),
    }


def event_to_dict(event: RegistryEvent, *, include_diff: bool = True) -> Dict[str, Any]:
    if isinstance(event, SnapshotEvent):
        return {
            "type": "snapshot",
            "repositoryId": event.repository_id,
            "snapshot": snapshot_to_dict(event.snapshot, include_diff=include_diff),
        }
    if isinstance(event, RepositoriesEvent):
        return {
            "type": "repositories",
            "currentId": event.current_id,
            "registeredRepositories": [summary_to_dict(s) for s in event.repositories],
        }
    raise TypeError(f"Unknown registry event: {type(event).__name__}")


def render(snapshot: Snapshot, *, include_diff: bool = True) -> str:
    """Return formatted JSON string."""
    return json.dumps(snapshot_to_dict(snapshot, include_diff=include_diff), indent=2)


def render_summaries(summaries: Iterable[RepoSummary]) -> str:
    return json.dumps([summary_to_dict(s) for s in summaries], indent=2)
