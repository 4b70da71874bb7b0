"""
Run Store - persistence of runs and their per-node results.

Every state transition is one keyed write: run-level fields are updated
with ``update_run`` and each node's result is upserted on its own with
``upsert_node_result``. The node map is never rewritten wholesale.

Two implementations:
- InMemoryRunStore: dict-backed, for tests, the CLI and single-process use
- FileRunStore: one directory per run on disk

  {base_path}/
    └── {run_id}/
        ├── run.json           # run-level fields (status, timestamps, snapshot)
        └── nodes/
            └── {hex(node_id)}.json
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Protocol

from flowrun.schemas.run import NodeResult, Run, RunStatus
from flowrun.utils.io import atomic_write

logger = logging.getLogger(__name__)

# Run-level fields a caller may patch after creation
UPDATABLE_RUN_FIELDS = frozenset({"status", "finished_at", "error", "started_at"})


class RunStoreError(RuntimeError):
    """A run could not be read or written."""


class RunStore(Protocol):
    """Persistence collaborator used by the recorder, the worker and the API."""

    async def create_run(self, run: Run) -> str: ...

    async def update_run(self, run_id: str, **patch: Any) -> None: ...

    async def upsert_node_result(self, run_id: str, result: NodeResult) -> None: ...

    async def get_run(self, run_id: str) -> Run | None: ...

    async def list_runs(self, workflow_id: str | None = None, limit: int = 25) -> list[Run]: ...


def _check_patch(patch: dict[str, Any]) -> dict[str, Any]:
    unknown = set(patch) - UPDATABLE_RUN_FIELDS
    if unknown:
        raise RunStoreError(f"Cannot update run fields: {sorted(unknown)}")
    if "status" in patch:
        patch = {**patch, "status": RunStatus(patch["status"])}
    return patch


def _run_header(run: Run) -> dict[str, Any]:
    data = run.model_dump(mode="json", exclude={"node_results"})
    data.pop("duration_ms", None)
    return data


class InMemoryRunStore:
    """
    Dict-backed run store.

    Readers get deep copies, so a run returned by ``get_run`` never changes
    under the caller and never shows a half-applied write.
    """

    def __init__(self):
        self._runs: dict[str, Run] = {}
        self._order: list[str] = []

    async def create_run(self, run: Run) -> str:
        if run.id in self._runs:
            raise RunStoreError(f"Run {run.id} already exists")
        self._runs[run.id] = run.model_copy(deep=True)
        self._order.append(run.id)
        return run.id

    async def update_run(self, run_id: str, **patch: Any) -> None:
        patch = _check_patch(patch)
        run = self._runs.get(run_id)
        if run is None:
            raise RunStoreError(f"Unknown run {run_id}")
        for key, value in patch.items():
            setattr(run, key, value)

    async def upsert_node_result(self, run_id: str, result: NodeResult) -> None:
        run = self._runs.get(run_id)
        if run is None:
            raise RunStoreError(f"Unknown run {run_id}")
        run.node_results[result.node_id] = result.model_copy(deep=True)

    async def get_run(self, run_id: str) -> Run | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run is not None else None

    async def list_runs(self, workflow_id: str | None = None, limit: int = 25) -> list[Run]:
        runs = [
            self._runs[run_id]
            for run_id in reversed(self._order)
            if workflow_id is None or self._runs[run_id].workflow_id == workflow_id
        ]
        runs.sort(key=lambda r: r.started_at, reverse=True)
        return [run.model_copy(deep=True) for run in runs[:limit]]


class FileRunStore:
    """
    File-based run store.

    Each transition writes one small file atomically (temp file + rename),
    so a poller reading the directory sees either the previous or the new
    state of a node, never a torn write.
    """

    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    # === PATHS ===

    def _validate_key(self, key: str) -> None:
        """
        Validate a run id to prevent path traversal.

        Raises:
            RunStoreError: If the key is empty or contains path components
        """
        if not key or key.strip() == "":
            raise RunStoreError("Run id cannot be empty")
        if "/" in key or "\\" in key:
            raise RunStoreError(f"Invalid run id: path separators not allowed in '{key}'")
        if ".." in key or key.startswith("."):
            raise RunStoreError(f"Invalid run id: path traversal detected in '{key}'")

    def _run_dir(self, run_id: str) -> Path:
        self._validate_key(run_id)
        return self.base_path / run_id

    @staticmethod
    def _node_file(node_id: str) -> str:
        # Node ids come from user graphs; hex keeps them filesystem-safe
        return f"{node_id.encode('utf-8').hex()}.json"

    # === WRITES ===

    async def create_run(self, run: Run) -> str:
        run_dir = self._run_dir(run.id)

        def _create():
            if (run_dir / "run.json").exists():
                raise RunStoreError(f"Run {run.id} already exists")
            (run_dir / "nodes").mkdir(parents=True, exist_ok=True)
            with atomic_write(run_dir / "run.json") as f:
                json.dump(_run_header(run), f, indent=2)
            for result in run.node_results.values():
                with atomic_write(run_dir / "nodes" / self._node_file(result.node_id)) as f:
                    f.write(result.model_dump_json(indent=2))

        try:
            await asyncio.to_thread(_create)
        except OSError as e:
            raise RunStoreError(f"Failed to create run {run.id}: {e}") from e
        logger.debug(f"Created run directory {run_dir}")
        return run.id

    async def update_run(self, run_id: str, **patch: Any) -> None:
        patch = _check_patch(patch)
        run_path = self._run_dir(run_id) / "run.json"

        def _update():
            if not run_path.exists():
                raise RunStoreError(f"Unknown run {run_id}")
            with open(run_path, encoding="utf-8") as f:
                header = json.load(f)
            current = Run.model_validate(header)
            for key, value in patch.items():
                setattr(current, key, value)
            with atomic_write(run_path) as f:
                json.dump(_run_header(current), f, indent=2)

        try:
            await asyncio.to_thread(_update)
        except OSError as e:
            raise RunStoreError(f"Failed to update run {run_id}: {e}") from e

    async def upsert_node_result(self, run_id: str, result: NodeResult) -> None:
        run_dir = self._run_dir(run_id)

        def _upsert():
            if not (run_dir / "run.json").exists():
                raise RunStoreError(f"Unknown run {run_id}")
            with atomic_write(run_dir / "nodes" / self._node_file(result.node_id)) as f:
                f.write(result.model_dump_json(indent=2))

        try:
            await asyncio.to_thread(_upsert)
        except OSError as e:
            raise RunStoreError(f"Failed to write node {result.node_id} of run {run_id}: {e}") from e

    # === READS ===

    def _load(self, run_dir: Path) -> Run | None:
        run_path = run_dir / "run.json"
        if not run_path.exists():
            return None
        with open(run_path, encoding="utf-8") as f:
            header = json.load(f)
        header.pop("duration_ms", None)
        run = Run.model_validate(header)

        nodes_dir = run_dir / "nodes"
        results = []
        if nodes_dir.exists():
            for node_path in nodes_dir.glob("*.json"):
                try:
                    results.append(NodeResult.model_validate_json(node_path.read_text(encoding="utf-8")))
                except ValueError as e:
                    logger.warning(f"Skipping unreadable node result {node_path}: {e}")
        # Results in the order nodes started
        results.sort(key=lambda r: r.started_at)
        run.node_results = {result.node_id: result for result in results}
        return run

    async def get_run(self, run_id: str) -> Run | None:
        run_dir = self._run_dir(run_id)
        return await asyncio.to_thread(self._load, run_dir)

    async def list_runs(self, workflow_id: str | None = None, limit: int = 25) -> list[Run]:
        def _scan():
            runs = []
            if not self.base_path.exists():
                return runs
            for run_dir in self.base_path.iterdir():
                if not run_dir.is_dir():
                    continue
                try:
                    run = self._load(run_dir)
                except (OSError, ValueError) as e:
                    logger.warning(f"Skipping unreadable run {run_dir.name}: {e}")
                    continue
                if run is None:
                    continue
                if workflow_id is not None and run.workflow_id != workflow_id:
                    continue
                runs.append(run)
            runs.sort(key=lambda r: r.started_at, reverse=True)
            return runs[:limit]

        return await asyncio.to_thread(_scan)

