"""Tests for the run submission / polling HTTP API."""

from pathlib import Path

import aiohttp
import httpx
import pytest

from flowrun.config import ServerConfig
from flowrun.credentials import InMemoryCredentialLookup
from flowrun.runtime.engine import WorkflowEngine
from flowrun.runtime.preflight import CreditGate, Principal
from flowrun.runtime.worker import RunWorker
from flowrun.schemas.run import RunStatus
from flowrun.server.api import RunApiServer
from flowrun.storage import FileRunStore, InMemoryRunStore

# === HELPER FUNCTIONS ===

GRAPH = {
    "nodes": [
        {"id": "start", "data": {"type": "Start"}},
        {"id": "set", "data": {"type": "Set", "parameters": {"greeting": "hi"}}},
    ],
    "edges": [{"source": "start", "target": "set"}],
}


def make_server(store=None, **kwargs) -> RunApiServer:
    store = store or InMemoryRunStore()
    engine = WorkflowEngine(
        store,
        credentials=InMemoryCredentialLookup(),
        transport=httpx.MockTransport(lambda request: httpx.Response(200)),
    )
    worker = RunWorker(engine, store)
    return RunApiServer(worker, store, ServerConfig(host="127.0.0.1", port=0), **kwargs)


class running:
    """Async context manager: start a server and an HTTP session against it."""

    def __init__(self, server: RunApiServer):
        self.server = server

    async def __aenter__(self):
        await self.server.start()
        self.session = aiohttp.ClientSession(base_url=f"http://127.0.0.1:{self.server.port}")
        return self.session

    async def __aexit__(self, *exc):
        await self.session.close()
        await self.server.stop()
        await self.server._worker.stop()


class TestRunApiServer:
    """Submit, poll and list runs over HTTP."""

    @pytest.mark.asyncio
    async def test_lifecycle(self):
        server = make_server()
        assert not server.is_running
        assert server.port is None

        await server.start()
        try:
            assert server.is_running
            assert server.port > 0
            assert server._worker.is_running
        finally:
            await server.stop()
            await server._worker.stop()
        assert not server.is_running

    @pytest.mark.asyncio
    async def test_execute_then_poll(self):
        server = make_server()
        async with running(server) as session:
            async with session.post("/workflows/wf_api/execute", json={"graph": GRAPH}) as resp:
                assert resp.status == 202
                body = await resp.json()
            run_id = body["run_id"]
            assert body["workflow_id"] == "wf_api"

            await server._worker.wait_for_completion(run_id, timeout=5)

            async with session.get(f"/runs/{run_id}") as resp:
                assert resp.status == 200
                run = (await resp.json())["run"]
            assert run["status"] == RunStatus.SUCCESS
            assert list(run["node_results"]) == ["start", "set"]
            assert run["node_results"]["set"]["output"]["values_set"] == {"greeting": "hi"}

            async with session.get("/workflows/wf_api/runs") as resp:
                runs = (await resp.json())["runs"]
            assert [r["id"] for r in runs] == [run_id]

            async with session.get("/workflows/wf_api/execution") as resp:
                assert (await resp.json())["run"]["id"] == run_id

    @pytest.mark.asyncio
    async def test_version_id_passed_through(self):
        server = make_server()
        async with running(server) as session:
            async with session.post("/workflows/wf/execute", json={"graph": GRAPH, "version_id": "ver_7"}) as resp:
                run_id = (await resp.json())["run_id"]
            run = await server._worker.wait_for_completion(run_id, timeout=5)
            assert run.version_id == "ver_7"

    @pytest.mark.asyncio
    async def test_bad_json(self):
        async with running(make_server()) as session:
            async with session.post("/workflows/wf/execute", data="{nope") as resp:
                assert resp.status == 400

    @pytest.mark.asyncio
    async def test_missing_graph(self):
        async with running(make_server()) as session:
            async with session.post("/workflows/wf/execute", json={"nodes": []}) as resp:
                assert resp.status == 400

    @pytest.mark.asyncio
    async def test_empty_graph_is_unprocessable(self):
        async with running(make_server()) as session:
            async with session.post("/workflows/wf/execute", json={"graph": {"nodes": []}}) as resp:
                assert resp.status == 422
                assert "no nodes" in (await resp.json())["error"]

    @pytest.mark.asyncio
    async def test_unknown_run(self):
        async with running(make_server()) as session:
            async with session.get("/runs/run_missing") as resp:
                assert resp.status == 404

    @pytest.mark.asyncio
    async def test_invalid_run_id(self, tmp_path: Path):
        async with running(make_server(FileRunStore(tmp_path))) as session:
            async with session.get("/runs/.hidden") as resp:
                assert resp.status == 400

    @pytest.mark.asyncio
    async def test_no_execution_yet(self):
        async with running(make_server()) as session:
            async with session.get("/workflows/never/execution") as resp:
                assert resp.status == 404
                assert await resp.json() == {"run": None, "message": "No execution found"}


class TestPreflightGate:
    """The gate answers before anything is queued."""

    @pytest.mark.asyncio
    async def test_guest_rejected(self):
        server = make_server(gate=CreditGate())
        async with running(server) as session:
            async with session.post("/workflows/wf/execute", json={"graph": GRAPH}) as resp:
                assert resp.status == 401
                assert (await resp.json())["action"] == "login_required"
        assert server._worker.get_stats()["completed_runs"] == 0

    @pytest.mark.asyncio
    async def test_out_of_credits(self):
        server = make_server(gate=CreditGate())
        async with running(server) as session:
            headers = {"X-User-Id": "u1"}
            async with session.post("/workflows/wf/execute", json={"graph": GRAPH}, headers=headers) as resp:
                assert resp.status == 402
                assert (await resp.json())["required_credits"] == 1

    @pytest.mark.asyncio
    async def test_custom_principal_resolver(self):
        server = make_server(
            gate=CreditGate(),
            principal_resolver=lambda request: Principal(user_id="u1", credit_balance=10),
        )
        async with running(server) as session:
            async with session.post("/workflows/wf/execute", json={"graph": GRAPH}) as resp:
                assert resp.status == 202
                run_id = (await resp.json())["run_id"]
            await server._worker.wait_for_completion(run_id, timeout=5)
