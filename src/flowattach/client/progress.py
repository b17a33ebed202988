from __future__ import annotations

import asyncio
import logging
import random

from flowattach.client.store import FileStateStore
from flowattach.models import FileStatus

logger = logging.getLogger(__name__)

PROGRESS_CEILING = 95


class ProgressEstimator:
    """Synthetic per-file progress while a flow call is outstanding.

    The flows report nothing until they finish, so each in-flight file gets
    a ticking task that nudges its progress upwards, staying below
    ``PROGRESS_CEILING`` until the real result arrives.
    """

    def __init__(
        self,
        store: FileStateStore,
        interval: float = 0.2,
        max_step: float = 15.0,
        rng: random.Random | None = None,
    ) -> None:
        self._store = store
        self.interval = interval
        self.max_step = max_step
        self._rng = rng or random.Random()
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._disposed = False

    @property
    def active(self) -> set[str]:
        return {name for name, task in self._tasks.items() if not task.done()}

    def start(self, name: str) -> None:
        if self._disposed:
            return
        self.stop(name)
        self._tasks[name] = asyncio.create_task(self._tick(name), name=f"progress:{name}")

    def stop(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()

    def cancel_all(self) -> None:
        """Cancel every live task and refuse new ones."""
        self._disposed = True
        for name in list(self._tasks):
            self.stop(name)

    async def _tick(self, name: str) -> None:
        simulated = 0.0
        while True:
            await asyncio.sleep(self.interval)
            record = self._store.get(name)
            # A result or teardown may land between ticks.
            if self._disposed or record is None or record.status != FileStatus.UPLOADING:
                return
            simulated = min(simulated + self._rng.uniform(0, self.max_step), PROGRESS_CEILING - 1)
            self._store.update(name, progress=int(simulated))
