"""Tests for the HTTP API."""

import pytest

ITEM_BODY = {
    "workflow_key": "github_deploys",
    "kind": "recipe",
    "title": "Roll back a bad deploy",
    "body": "Revert the merge commit and re-run the pipeline.",
    "tags": {"area": "ci"},
    "source_refs": [],
    "promotion_mode": "auto",
}


async def _create_task(client, auth_headers, **overrides):
    payload = {"title": "Ship release", "workflow_key": "github_deploys", **overrides}
    response = await client.post("/api/v1/tasks", json=payload, headers=auth_headers)
    assert response.status_code == 201
    return response.json()


class TestHealth:
    """Tests for the health endpoint."""

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestAuth:
    """Tests for credential checks on writes."""

    @pytest.mark.asyncio
    async def test_write_without_token(self, client):
        """Test that writes without a token are rejected."""
        response = await client.post(
            "/api/v1/tasks", json={"title": "x", "workflow_key": "y"}
        )
        assert response.status_code == 401
        assert response.json()["code"] == "unauthorized"
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_write_with_wrong_token(self, client):
        """Test that an unknown token is rejected."""
        response = await client.post(
            "/api/v1/library",
            json=ITEM_BODY,
            headers={"Authorization": "Bearer nope"},
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_reads_are_open(self, client):
        """Test that list endpoints need no token."""
        response = await client.get("/api/v1/tasks")
        assert response.status_code == 200
        assert response.json() == {"data": [], "count": 0}


class TestTasksApi:
    """Tests for task routes."""

    @pytest.mark.asyncio
    async def test_list_with_q(self, client, auth_headers):
        """Test the q filter over the API."""
        await _create_task(client, auth_headers, title="Speed up CI", goal="Deployment pipeline")
        await _create_task(client, auth_headers, title="Write docs")

        response = await client.get("/api/v1/tasks", params={"q": " deploy "})
        body = response.json()
        assert response.status_code == 200
        assert body["count"] == 1
        assert body["data"][0]["title"] == "Speed up CI"

    @pytest.mark.asyncio
    async def test_rename(self, client, auth_headers):
        """Test renaming and rejection of blank titles."""
        task = await _create_task(client, auth_headers)

        response = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"title": "Ship 2.0"}, headers=auth_headers
        )
        assert response.status_code == 200
        assert response.json()["title"] == "Ship 2.0"

        response = await client.patch(
            f"/api/v1/tasks/{task['id']}", json={"title": "   "}, headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

        response = await client.get(f"/api/v1/tasks/{task['id']}")
        assert response.json()["title"] == "Ship 2.0"

    @pytest.mark.asyncio
    async def test_unknown_task(self, client, auth_headers):
        """Test 404 mapping for unknown ids."""
        response = await client.get("/api/v1/tasks/missing/runs")
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

        response = await client.patch(
            "/api/v1/tasks/missing", json={"title": "x"}, headers=auth_headers
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_pagination_bounds(self, client):
        """Test that out-of-range pagination is rejected at the boundary."""
        response = await client.get("/api/v1/tasks", params={"limit": 0})
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"
        assert "limit" in response.json()["detail"]

        response = await client.get("/api/v1/library", params={"skip": -1})
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

        response = await client.get("/api/v1/library", params={"limit": 1001})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_blank_workflow_key(self, client, auth_headers):
        """Test that a whitespace-only workflow key is rejected."""
        response = await client.post(
            "/api/v1/tasks", json={"title": "x", "workflow_key": "   "}, headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

        response = await client.get("/api/v1/tasks")
        assert response.json()["count"] == 0

    @pytest.mark.asyncio
    async def test_trailing_slash_collections(self, client, auth_headers):
        """Test that collection routes also answer with a trailing slash."""
        response = await client.post(
            "/api/v1/tasks/",
            json={"title": "Ship release", "workflow_key": "github_deploys"},
            headers=auth_headers,
        )
        assert response.status_code == 201

        response = await client.get("/api/v1/tasks/")
        assert response.status_code == 200
        assert response.json()["count"] == 1

        response = await client.post("/api/v1/library/", json=ITEM_BODY, headers=auth_headers)
        assert response.status_code == 201

        response = await client.get("/api/v1/library/")
        assert response.status_code == 200
        assert response.json()["count"] == 1


class TestRunsApi:
    """Tests for run routes."""

    @pytest.mark.asyncio
    async def test_run_flow(self, client, auth_headers):
        """Test start, events with a correction, links, end and detail."""
        task = await _create_task(client, auth_headers)

        response = await client.post(
            f"/api/v1/tasks/{task['id']}/runs", json={"targets": ["svc:web"]}, headers=auth_headers
        )
        assert response.status_code == 201
        run = response.json()
        assert run["status"] == "in_progress"

        response = await client.post(
            f"/api/v1/runs/{run['id']}/events",
            json={"type": "cmd", "message": "deploy.sh"},
            headers=auth_headers,
        )
        assert response.json()["id"] == 1
        response = await client.post(
            f"/api/v1/runs/{run['id']}/events",
            json={"type": "error", "supersedes_event_id": 1},
            headers=auth_headers,
        )
        assert response.json()["id"] == 2

        response = await client.post(
            f"/api/v1/runs/{run['id']}/events",
            json={"type": "error", "supersedes_event_id": 7},
            headers=auth_headers,
        )
        assert response.status_code == 404

        response = await client.post("/api/v1/library", json=ITEM_BODY, headers=auth_headers)
        item = response.json()
        for _ in range(2):
            response = await client.post(
                f"/api/v1/runs/{run['id']}/links",
                json={"library_item_id": item["id"], "relation": "used"},
                headers=auth_headers,
            )
            assert response.status_code == 200
        assert response.json()["created"] is False

        response = await client.post(
            f"/api/v1/runs/{run['id']}/end",
            json={"status": "success", "summary": "deployed"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        response = await client.post(
            f"/api/v1/runs/{run['id']}/end",
            json={"status": "failed"},
            headers=auth_headers,
        )
        assert response.status_code == 409
        assert response.json()["code"] == "conflict"

        response = await client.get(f"/api/v1/runs/{run['id']}/detail")
        detail = response.json()
        assert detail["run"]["status"] == "success"
        assert [e["id"] for e in detail["events"]] == [1, 2]
        assert detail["events"][0]["message"] == "deploy.sh"
        assert len(detail["memory_links"]) == 1
        assert detail["memory_links"][0]["library_item"]["id"] == item["id"]
        assert set(detail["links_by_relation"]) == {"used", "created", "promoted", "superseded"}

        response = await client.get(f"/api/v1/tasks/{task['id']}/runs")
        assert response.json()["count"] == 1

    @pytest.mark.asyncio
    async def test_unknown_relation_is_rejected(self, client, auth_headers):
        """Test that the relation vocabulary is closed at the boundary."""
        response = await client.post(
            "/api/v1/runs/whatever/links",
            json={"library_item_id": "x", "relation": "liked"},
            headers=auth_headers,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"
        assert "relation" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_unknown_run_detail(self, client):
        response = await client.get("/api/v1/runs/missing/detail")
        assert response.status_code == 404


class TestLibraryApi:
    """Tests for library routes."""

    @pytest.mark.asyncio
    async def test_supersede_flow(self, client, auth_headers):
        """Test create, supersede, current filter, head, history and conflict."""
        response = await client.post("/api/v1/library", json=ITEM_BODY, headers=auth_headers)
        assert response.status_code == 201
        original = response.json()
        assert original["superseded_by_id"] is None

        response = await client.put(
            f"/api/v1/library/{original['id']}",
            json={**ITEM_BODY, "title": "Roll back safely"},
            headers=auth_headers,
        )
        assert response.status_code == 201
        new = response.json()
        assert new["id"] != original["id"]

        response = await client.get(f"/api/v1/library/{original['id']}")
        old = response.json()
        assert old["title"] == "Roll back a bad deploy"
        assert old["superseded_by_id"] == new["id"]

        response = await client.get(
            "/api/v1/library",
            params={"workflow_key": "github_deploys", "current_only": "true"},
        )
        assert [i["id"] for i in response.json()["data"]] == [new["id"]]

        response = await client.put(
            f"/api/v1/library/{original['id']}", json=ITEM_BODY, headers=auth_headers
        )
        assert response.status_code == 409
        assert response.json()["current_head_id"] == new["id"]

        response = await client.get(f"/api/v1/library/{original['id']}/head")
        assert response.json()["id"] == new["id"]

        response = await client.get(f"/api/v1/library/{new['id']}/history")
        history = response.json()
        assert history["head_id"] == new["id"]
        assert [v["id"] for v in history["data"]] == [original["id"], new["id"]]

    @pytest.mark.asyncio
    async def test_workflow_keys(self, client, auth_headers):
        """Test the derived bucket endpoint."""
        await client.post("/api/v1/library", json=ITEM_BODY, headers=auth_headers)
        await client.post(
            "/api/v1/library",
            json={**ITEM_BODY, "workflow_key": "api_db"},
            headers=auth_headers,
        )

        response = await client.get("/api/v1/library/workflow-keys", params={"current_only": "true"})
        assert response.status_code == 200
        assert response.json() == {
            "data": [
                {"workflow_key": "api_db", "bucket_name": "API DB", "count": 1},
                {"workflow_key": "github_deploys", "bucket_name": "GitHub Deploys", "count": 1},
            ]
        }

    @pytest.mark.asyncio
    async def test_create_with_run_and_provenance(self, client, auth_headers):
        """Test run attribution on create and the item provenance listing."""
        task = await _create_task(client, auth_headers)
        run = (
            await client.post(
                f"/api/v1/tasks/{task['id']}/runs", json={}, headers=auth_headers
            )
        ).json()

        response = await client.post(
            "/api/v1/library",
            json={**ITEM_BODY, "promotion_mode": "user", "run_id": run["id"]},
            headers=auth_headers,
        )
        item = response.json()

        response = await client.get(f"/api/v1/library/{item['id']}/links")
        body = response.json()
        assert body["count"] == 1
        assert body["data"][0]["relation"] == "promoted"
        assert body["data"][0]["task_id"] == task["id"]

    @pytest.mark.asyncio
    async def test_invalid_kind(self, client, auth_headers):
        """Test that kinds outside the vocabulary are rejected."""
        response = await client.post(
            "/api/v1/library", json={**ITEM_BODY, "kind": "snippet"}, headers=auth_headers
        )
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"
        assert "kind" in response.json()["detail"]

        response = await client.get("/api/v1/library", params={"kind": "snippet"})
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"
