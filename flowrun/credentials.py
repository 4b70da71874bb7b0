"""
Credential lookup for executors.

Executors that talk to external services (SMTP, OpenAI) ask for secrets by
name through ``ExecutionContext.secret``. The engine only passes values
through; it never inspects or validates them.
"""

import os
from typing import Protocol


class CredentialLookup(Protocol):
    """Opaque key -> opaque value."""

    def get(self, name: str) -> str | None: ...


class EnvCredentialLookup:
    """Read secrets from environment variables, optionally with a prefix."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix

    def get(self, name: str) -> str | None:
        return os.environ.get(f"{self.prefix}{name}")


class InMemoryCredentialLookup:
    """Dict-backed lookup for tests and embedding."""

    def __init__(self, values: dict[str, str] | None = None):
        self._values = dict(values or {})

    def get(self, name: str) -> str | None:
        return self._values.get(name)

    def set(self, name: str, value: str) -> None:
        self._values[name] = value


class ChainedCredentialLookup:
    """Try several lookups in order; the first non-None value wins."""

    def __init__(self, *lookups: CredentialLookup):
        self.lookups = list(lookups)

    def get(self, name: str) -> str | None:
        for lookup in self.lookups:
            value = lookup.get(name)
            if value is not None:
                return value
        return None
