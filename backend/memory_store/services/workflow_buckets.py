"""Workflow bucket aggregation over library items.

A bucket is derived, never stored: for each workflow key it carries a
human-readable label and a live count of (optionally only current) items.
"""

from memory_store.db import library_store
from memory_store.models import WorkflowKeyCount

# Tokens that are not simply capitalized
ACRONYMS: dict[str, str] = {
    "github": "GitHub",
    "api": "API",
    "db": "DB",
}


def bucket_name(workflow_key: str) -> str:
    """Turn a workflow key into a label, e.g. ``github_api_sync`` -> ``GitHub API Sync``."""
    words = []
    for token in workflow_key.split("_"):
        if not token:
            continue
        acronym = ACRONYMS.get(token.lower())
        words.append(acronym if acronym else token[0].upper() + token[1:])
    return " ".join(words)


async def workflow_buckets(current_only: bool = False) -> list[WorkflowKeyCount]:
    """One bucket per distinct workflow key, sorted by key."""
    counts = await library_store.count_by_workflow_key(current_only=current_only)
    return [
        WorkflowKeyCount(workflow_key=key, bucket_name=bucket_name(key), count=count)
        for key, count in counts
    ]
