from __future__ import annotations

"""
Keyed in-flight call registry shared by every orchestrator in the process.

Design intent:
- Concurrent triggers for the same `(stage, patient_id)` within one generation,
  with the same arguments, await one call.
- Busy flags are derived from the registry so every view sees the same state.
- A per-patient generation counter lets a reset invalidate late results.
"""

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

STAGE_TRANSCRIBE = "transcribe"
STAGE_FORMAT = "format"
STAGE_EXTRACT = "extract"
STAGE_KEY_MOMENTS = "key_moments"
STAGE_TRIALS = "trials"


class MutationRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._inflight: dict[tuple[str, str, int, Hashable], asyncio.Future[Any]] = {}
        self._generations: dict[str, int] = {}

    async def run(
        self,
        stage: str,
        patient_id: str,
        factory: Callable[[], Awaitable[T]],
        *,
        generation: Optional[int] = None,
        args: Hashable = None,
    ) -> T:
        """Run `factory` once per `(stage, patient_id, generation, args)`; later callers await it."""
        with self._lock:
            if generation is None:
                generation = self._generations.get(patient_id, 0)
            key = (stage, patient_id, generation, args)
            task = self._inflight.get(key)
            joined = task is not None
            if task is None:
                task = asyncio.ensure_future(factory())
                self._inflight[key] = task
                task.add_done_callback(lambda done, k=key: self._release(k, done))
        if joined:
            logger.debug(
                "joining in-flight call stage=%s patient_id=%s generation=%d", stage, patient_id, generation
            )
        return await asyncio.shield(task)

    def _release(self, key: tuple[str, str, int, Hashable], task: asyncio.Future[Any]) -> None:
        with self._lock:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    def _current_stages(self, patient_id: str) -> set[str]:
        # Calls from before a reset keep running but no longer count as busy.
        current = self._generations.get(patient_id, 0)
        return {stage for stage, pid, gen, _ in self._inflight if pid == patient_id and gen == current}

    def is_in_flight(self, stage: str, patient_id: str) -> bool:
        with self._lock:
            return stage in self._current_stages(patient_id)

    def in_flight_stages(self, patient_id: str) -> list[str]:
        with self._lock:
            return sorted(self._current_stages(patient_id))

    def generation(self, patient_id: str) -> int:
        with self._lock:
            return self._generations.get(patient_id, 0)

    def bump_generation(self, patient_id: str) -> int:
        with self._lock:
            value = self._generations.get(patient_id, 0) + 1
            self._generations[patient_id] = value
            return value


_DEFAULT_REGISTRY = MutationRegistry()


def default_registry() -> MutationRegistry:
    return _DEFAULT_REGISTRY
