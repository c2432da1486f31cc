"""Registry of execution backends keyed by backend id."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping

from orpheus.orchestrator.backend.base import Backend

logger = logging.getLogger(__name__)


class BackendRegistry(Mapping[str, Backend]):
    """Caller-owned mapping of backend id to backend.

    The dispatcher only reads from it. Registering or removing backends while
    a dispatch is in flight is the caller's responsibility to avoid.
    """

    def __init__(self, backends: list[Backend] | None = None) -> None:
        self._backends: dict[str, Backend] = {}
        for backend in backends or []:
            self.register(backend)

    def register(self, backend: Backend) -> None:
        """Add or replace the backend stored under ``backend.backend_id``."""

        if backend.backend_id in self._backends:
            logger.info("Replacing registered backend %s", backend.backend_id)
        self._backends[backend.backend_id] = backend

    def unregister(self, backend_id: str) -> Backend | None:
        """Remove and return a backend, or ``None`` if it was not registered."""

        return self._backends.pop(backend_id, None)

    def __getitem__(self, backend_id: str) -> Backend:
        return self._backends[backend_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._backends)

    def __len__(self) -> int:
        return len(self._backends)
