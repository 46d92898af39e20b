"""Tests for workflow bucket aggregation."""

import pytest

from memory_store.db import library_store
from memory_store.services import bucket_name, workflow_buckets


class TestBucketName:
    """Tests for workflow key labels."""

    @pytest.mark.parametrize(
        ("workflow_key", "expected"),
        [
            ("github_api_sync", "GitHub API Sync"),
            ("db_migrations", "DB Migrations"),
            ("GITHUB_release", "GitHub Release"),
            ("deploy", "Deploy"),
            ("release__notes_", "Release Notes"),
            ("ci_mixedCase", "Ci MixedCase"),
            ("", ""),
        ],
    )
    def test_bucket_name(self, workflow_key, expected):
        """Test splitting, capitalization and acronyms."""
        assert bucket_name(workflow_key) == expected

    def test_bucket_name_is_deterministic(self):
        """Test that the same key always gives the same label."""
        assert bucket_name("api_db_github") == bucket_name("api_db_github") == "API DB GitHub"


class TestWorkflowBuckets:
    """Tests for bucket counts."""

    @pytest.mark.asyncio
    async def test_counts_current_only(self, make_item):
        """Test that current_only counts exactly the current items per key."""
        a = await library_store.create(make_item(workflow_key="github_ci"))
        await library_store.supersede(a.id, make_item(workflow_key="github_ci"))
        await library_store.create(make_item(workflow_key="github_ci"))
        await library_store.create(make_item(workflow_key="db_ops"))

        current = await workflow_buckets(current_only=True)
        assert [(b.workflow_key, b.bucket_name, b.count) for b in current] == [
            ("db_ops", "DB Ops", 1),
            ("github_ci", "GitHub Ci", 2),
        ]

        everything = await workflow_buckets(current_only=False)
        assert {b.workflow_key: b.count for b in everything} == {"db_ops": 1, "github_ci": 3}

        for bucket in current:
            _, total = await library_store.list_items(
                workflow_key=bucket.workflow_key, current_only=True
            )
            assert bucket.count == total

    @pytest.mark.asyncio
    async def test_empty_library(self):
        """Test that an empty library has no buckets."""
        assert await workflow_buckets(current_only=True) == []
