"""Integration tests for the management API."""

import pytest

NODES = [
    {"id": "greet", "type": "greeting", "data": {"messageText": "Welcome to Acme."}},
    {"id": "menu", "type": "input", "data": {"prompt": "Press 1 for sales."}},
    {"id": "sales", "type": "transfer", "data": {"destination": "+442071234567"}},
    {"id": "bye", "type": "end", "data": {"message": "Goodbye."}},
]
EDGES = [
    {"source": "greet", "target": "menu"},
    {"source": "menu", "target": "sales", "sourceHandle": "1"},
    {"source": "menu", "target": "bye", "sourceHandle": "no_match"},
]


async def _create(client, **overrides) -> dict:
    body = {"name": "Main line", "tenantId": "acme", "nodes": NODES, "edges": EDGES}
    body.update(overrides)
    response = await client.post("/workflows", json=body)
    assert response.status_code == 201
    return response.json()


class TestHealth:
    """Tests for health endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "ivrflow"
        assert data["activeCalls"] == 0


class TestWorkflowEndpoints:
    """Tests for workflow CRUD."""

    @pytest.mark.asyncio
    async def test_create_queues_audio(self, client, components):
        created = await _create(client)

        assert created["workflow"]["status"] == "draft"
        assert created["workflow"]["ttsStatus"] == "pending"
        assert created["audioProcessing"]["status"] == "queued"

        await components.audio_queue.drain()
        workflow_id = created["workflow"]["id"]

        workflow = (await client.get(f"/workflows/{workflow_id}")).json()
        assert workflow["ttsStatus"] == "completed"
        audio = {n["id"]: n["audioUrl"] for n in workflow["nodes"]}
        assert audio["greet"] and audio["menu"] and audio["bye"]
        assert audio["sales"] is None

        job_id = created["audioProcessing"]["jobId"]
        status = (await client.get(f"/workflows/{workflow_id}/tts-status/{job_id}")).json()
        assert status["status"] == "completed"
        assert status["progress"] == 100

    @pytest.mark.asyncio
    async def test_create_requires_name(self, client):
        response = await client.post("/workflows", json={"nodes": []})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_list_by_tenant(self, client):
        await _create(client)
        await _create(client, tenantId="globex")

        data = (await client.get("/workflows", params={"tenantId": "acme"})).json()

        assert data["total"] == 1
        assert data["workflows"][0]["tenantId"] == "acme"

    @pytest.mark.asyncio
    async def test_unknown_workflow(self, client):
        response = await client.get("/workflows/wf_missing")

        assert response.status_code == 404
        assert response.json()["error"] == "WORKFLOW_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_replace_with_stale_revision(self, client, components):
        created = await _create(client)
        await components.audio_queue.drain()
        workflow_id = created["workflow"]["id"]

        response = await client.put(
            f"/workflows/{workflow_id}",
            json={"nodes": NODES, "edges": EDGES, "expectedRevision": 1},
        )

        assert response.status_code == 409
        assert response.json()["error"] == "REVISION_CONFLICT"

    @pytest.mark.asyncio
    async def test_replace_with_current_revision(self, client, components):
        created = await _create(client)
        await components.audio_queue.drain()
        workflow_id = created["workflow"]["id"]
        current = (await client.get(f"/workflows/{workflow_id}")).json()

        nodes = [dict(n) for n in current["nodes"]]
        nodes[0]["data"] = {**nodes[0]["data"], "messageText": "Welcome back to Acme."}
        response = await client.put(
            f"/workflows/{workflow_id}",
            json={"nodes": nodes, "edges": EDGES, "expectedRevision": current["revision"]},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["workflow"]["revision"] == current["revision"] + 1
        assert data["audioProcessing"]["status"] == "queued"

    @pytest.mark.asyncio
    async def test_activation(self, client):
        created = await _create(client)
        workflow_id = created["workflow"]["id"]

        response = await client.put(f"/workflows/{workflow_id}/status", json={"status": "active"})

        assert response.status_code == 200
        assert response.json()["status"] == "active"

    @pytest.mark.asyncio
    async def test_activation_of_invalid_workflow(self, client):
        created = await _create(client, nodes=NODES[:2], edges=EDGES[:1])
        workflow_id = created["workflow"]["id"]

        response = await client.put(f"/workflows/{workflow_id}/status", json={"status": "active"})

        assert response.status_code == 422
        codes = [issue["code"] for issue in response.json()["details"]["errors"]]
        assert "NO_END" in codes

    @pytest.mark.asyncio
    async def test_replace_active_workflow_with_invalid_graph(self, client):
        created = await _create(client)
        workflow_id = created["workflow"]["id"]
        await client.put(f"/workflows/{workflow_id}/status", json={"status": "active"})

        edges = EDGES + [{"source": "greet", "target": "bye"}]
        response = await client.put(f"/workflows/{workflow_id}", json={"nodes": NODES, "edges": edges})

        assert response.status_code == 422
        assert response.json()["error"] == "WORKFLOW_INVALID"
        codes = [issue["code"] for issue in response.json()["details"]["errors"]]
        assert "AMBIGUOUS_EDGE" in codes
        assert len((await client.get(f"/workflows/{workflow_id}")).json()["edges"]) == 3

    @pytest.mark.asyncio
    async def test_validate(self, client):
        created = await _create(client, nodes=NODES + [{"id": "lonely", "type": "voicemail", "data": {}}])

        data = (await client.post(f"/workflows/{created['workflow']['id']}/validate")).json()

        assert data["valid"] is False
        assert [e["nodeId"] for e in data["errors"] if e["code"] == "ORPHAN_NODE"] == ["lonely"]

    @pytest.mark.asyncio
    async def test_delete(self, client, components, asset_storage):
        created = await _create(client)
        await components.audio_queue.drain()
        workflow_id = created["workflow"]["id"]

        data = (await client.delete(f"/workflows/{workflow_id}")).json()

        assert data == {"workflowId": workflow_id, "deleted": True, "deletedAssets": 3}
        assert (await client.get(f"/workflows/{workflow_id}")).status_code == 404


class TestNodeEndpoints:
    """Tests for node catalog, validation and edits."""

    @pytest.mark.asyncio
    async def test_catalog(self, client):
        catalog = (await client.get("/nodes")).json()

        types = {n["type"] for group in catalog.values() for n in group}
        assert "transfer" in types

    @pytest.mark.asyncio
    async def test_validate_node(self, client):
        invalid = (await client.post("/nodes/validate", json={"type": "transfer", "data": {}})).json()
        valid = (
            await client.post("/nodes/validate", json={"type": "transfer", "data": {"destination": "+15551234567"}})
        ).json()

        assert invalid["isValid"] is False
        assert "destination is required" in invalid["errors"]
        assert valid["isValid"] is True

    @pytest.mark.asyncio
    async def test_add_update_connect_delete(self, client, components):
        created = await _create(client)
        workflow_id = created["workflow"]["id"]

        added = await client.post(
            f"/workflows/{workflow_id}/nodes",
            json={"id": "vm", "type": "voicemail", "data": {"text": "Leave a message."}},
        )
        assert added.status_code == 201

        edge = await client.post(
            f"/workflows/{workflow_id}/edges", json={"source": "menu", "target": "vm", "sourceHandle": "2"}
        )
        assert edge.status_code == 201
        assert edge.json()["sourceHandle"] == "2"

        updated = await client.patch(
            f"/workflows/{workflow_id}/nodes/vm", json={"data": {"text": "Please leave a message."}}
        )
        assert updated.status_code == 200
        assert updated.json()["data"]["text"] == "Please leave a message."

        removed = await client.delete(f"/workflows/{workflow_id}/nodes/vm")
        assert removed.status_code == 200
        assert all("vm" not in (e["source"], e["target"]) for e in removed.json()["edges"])

        await components.audio_queue.drain()

    @pytest.mark.asyncio
    async def test_add_invalid_node(self, client):
        created = await _create(client)

        response = await client.post(
            f"/workflows/{created['workflow']['id']}/nodes", json={"type": "transfer", "data": {}}
        )

        assert response.status_code == 422
        assert response.json()["error"] == "NODE_VALIDATION_FAILED"

    @pytest.mark.asyncio
    async def test_update_unknown_node(self, client):
        created = await _create(client)

        response = await client.patch(
            f"/workflows/{created['workflow']['id']}/nodes/ghost", json={"data": {"text": "Hi"}}
        )

        assert response.status_code == 404


class TestAudioEndpoints:
    """Tests for audio generation and job control."""

    @pytest.mark.asyncio
    async def test_generate_audio_is_idempotent(self, client, components, synthesizer):
        created = await _create(client)
        await components.audio_queue.drain()
        workflow_id = created["workflow"]["id"]
        calls = len(synthesizer.calls)

        data = (await client.post(f"/workflows/{workflow_id}/generate-audio")).json()

        assert data["status"] == "completed"
        assert data["skippedNodes"] == 3
        assert len(synthesizer.calls) == calls

    @pytest.mark.asyncio
    async def test_force_regenerate(self, client, components, synthesizer):
        created = await _create(client)
        await components.audio_queue.drain()
        workflow_id = created["workflow"]["id"]
        calls = len(synthesizer.calls)

        data = (
            await client.post(f"/workflows/{workflow_id}/generate-audio", json={"forceRegenerate": True})
        ).json()

        assert data["skippedNodes"] == 0
        assert len(synthesizer.calls) == calls + 3

    @pytest.mark.asyncio
    async def test_generate_for_unknown_workflow(self, client):
        assert (await client.post("/workflows/wf_missing/generate-audio")).status_code == 404

    @pytest.mark.asyncio
    async def test_jobs_and_stats(self, client, components):
        created = await _create(client)
        await components.audio_queue.drain()
        workflow_id = created["workflow"]["id"]
        job_id = created["audioProcessing"]["jobId"]

        jobs = (await client.get(f"/workflows/{workflow_id}/tts-jobs")).json()
        assert [j["jobId"] for j in jobs["jobs"]] == [job_id]

        stats = (await client.get("/tts-queue-stats")).json()
        assert stats["completed"] == 1
        assert stats["totalJobs"] == 1

        retry = await client.post(f"/workflows/{workflow_id}/tts-retry/{job_id}")
        assert retry.status_code == 409

        cancel = await client.post(f"/workflows/{workflow_id}/tts-cancel/{job_id}")
        assert cancel.status_code == 409

    @pytest.mark.asyncio
    async def test_job_of_other_workflow(self, client, components):
        first = await _create(client)
        second = await _create(client, name="Second line")
        await components.audio_queue.drain()

        response = await client.get(
            f"/workflows/{second['workflow']['id']}/tts-status/{first['audioProcessing']['jobId']}"
        )

        assert response.status_code == 404


class TestExecutionEndpoints:
    """Tests for execution read access."""

    @pytest.mark.asyncio
    async def test_unknown_execution(self, client):
        response = await client.get("/executions/CA404")

        assert response.status_code == 404
        assert response.json()["error"] == "EXECUTION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_active_calls(self, client, w1_workflow):
        await client.post(
            "/ivr/welcome", data={"CallSid": "CA300", "From": "+447700900123", "To": "+441234567890"}
        )

        data = (await client.get("/active-calls")).json()

        assert data["count"] == 1
        assert data["calls"][0]["callId"] == "CA300"
        assert data["calls"][0]["currentNodeId"] == "greet"
        assert (await client.get("/health")).json()["activeCalls"] == 1
