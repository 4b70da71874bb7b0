"""
Run API Server - submit workflow runs and poll their progress over HTTP.

Uses aiohttp for a lightweight embedded HTTP server that runs within the
existing asyncio loop, next to the RunWorker it feeds.

Routes:
    POST /workflows/{workflow_id}/execute   -> 202 {"run_id": ...}
    GET  /runs/{run_id}                     -> full run with node results
    GET  /workflows/{workflow_id}/runs      -> latest runs, newest first
    GET  /workflows/{workflow_id}/execution -> latest run
"""

import json
import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from flowrun.config import ServerConfig
from flowrun.graph.model import GraphStructureError
from flowrun.runtime.preflight import AllowAllGate, PreflightRejected, Principal, SubmissionGate
from flowrun.runtime.worker import RunWorker
from flowrun.schemas.run import Run, WorkflowVersion
from flowrun.storage.run_store import RunStore, RunStoreError

logger = logging.getLogger(__name__)

RUN_LIST_LIMIT = 25
EXECUTE_ACTION = "workflow_execute"


def principal_from_headers(request: web.Request) -> Principal | None:
    """Default principal resolver: ``X-User-Id`` header, guests have none."""
    user_id = request.headers.get("X-User-Id")
    if not user_id:
        return None
    return Principal(user_id=user_id)


def run_to_json(run: Run) -> dict[str, Any]:
    return run.model_dump(mode="json")


class RunApiServer:
    """
    Embedded HTTP server in front of a RunWorker and its RunStore.

    Usage:
        server = RunApiServer(worker, store, config)
        await server.start()
        ...  # POST /workflows/{id}/execute, GET /runs/{run_id}
        await server.stop()
    """

    def __init__(
        self,
        worker: RunWorker,
        store: RunStore | None = None,
        config: ServerConfig | None = None,
        gate: SubmissionGate | None = None,
        principal_resolver: Callable[[web.Request], Principal | None] = principal_from_headers,
    ):
        self._worker = worker
        self._store = store or worker.store
        self._config = config or ServerConfig()
        self._gate = gate or AllowAllGate()
        self._resolve_principal = principal_resolver
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/workflows/{workflow_id}/execute", self._handle_execute)
        app.router.add_get("/workflows/{workflow_id}/runs", self._handle_list_runs)
        app.router.add_get("/workflows/{workflow_id}/execution", self._handle_latest_run)
        app.router.add_get("/runs/{run_id}", self._handle_get_run)
        return app

    async def start(self) -> None:
        """Start the HTTP server (and the worker, if it is not running yet)."""
        if not self._worker.is_running:
            await self._worker.start()

        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await self._site.start()
        logger.info(f"Run API server started on {self._config.host}:{self.port}")

    async def stop(self) -> None:
        """Close the listener; runs already submitted keep going on the worker."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._app = None
            self._site = None
            logger.info("Run API server stopped")

    # === HANDLERS ===

    async def _handle_execute(self, request: web.Request) -> web.Response:
        workflow_id = request.match_info["workflow_id"]

        try:
            body = await request.json() if request.can_read_body else {}
        except (json.JSONDecodeError, ValueError):
            return web.json_response({"error": "Request body must be JSON"}, status=400)
        if not isinstance(body, dict) or not isinstance(body.get("graph"), dict):
            return web.json_response({"error": "Body must contain a 'graph' object"}, status=400)

        try:
            await self._gate.check(self._resolve_principal(request), EXECUTE_ACTION)
        except PreflightRejected as e:
            return web.json_response(e.detail, status=e.status_code)

        version_kwargs: dict[str, Any] = {"workflow_id": workflow_id, "graph": body["graph"]}
        if body.get("version_id"):
            version_kwargs["id"] = str(body["version_id"])
        version = WorkflowVersion(**version_kwargs)

        try:
            run_id = await self._worker.submit(version)
        except GraphStructureError as e:
            return web.json_response({"error": str(e)}, status=422)

        logger.info(f"🚀 Run {run_id} queued for workflow {workflow_id}")
        return web.json_response({"run_id": run_id, "workflow_id": workflow_id}, status=202)

    async def _handle_get_run(self, request: web.Request) -> web.Response:
        run_id = request.match_info["run_id"]
        try:
            run = await self._store.get_run(run_id)
        except RunStoreError as e:
            return web.json_response({"error": str(e)}, status=400)
        if run is None:
            return web.json_response({"error": f"Run {run_id} not found"}, status=404)
        return web.json_response({"run": run_to_json(run)})

    async def _handle_list_runs(self, request: web.Request) -> web.Response:
        workflow_id = request.match_info["workflow_id"]
        runs = await self._store.list_runs(workflow_id=workflow_id, limit=RUN_LIST_LIMIT)
        return web.json_response({"runs": [run_to_json(run) for run in runs]})

    async def _handle_latest_run(self, request: web.Request) -> web.Response:
        workflow_id = request.match_info["workflow_id"]
        runs = await self._store.list_runs(workflow_id=workflow_id, limit=1)
        if not runs:
            return web.json_response({"run": None, "message": "No execution found"}, status=404)
        return web.json_response({"run": run_to_json(runs[0])})

    @property
    def is_running(self) -> bool:
        """True between start() and stop()."""
        return self._site is not None

    @property
    def port(self) -> int | None:
        """Bound port; tests bind port 0 and read it back here."""
        if self._site and self._site._server and self._site._server.sockets:
            return self._site._server.sockets[0].getsockname()[1]
        return None
