"""Run persistence."""

from flowrun.storage.run_store import FileRunStore, InMemoryRunStore, RunStore, RunStoreError

__all__ = ["FileRunStore", "InMemoryRunStore", "RunStore", "RunStoreError"]
