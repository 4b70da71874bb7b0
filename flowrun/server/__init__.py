"""HTTP surface for run submission and polling."""

from flowrun.server.api import RunApiServer

__all__ = ["RunApiServer"]
