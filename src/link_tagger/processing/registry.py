"""In-memory table of links currently being processed."""

import logging
from typing import Callable

from ..errors import AlreadyProcessingError

logger = logging.getLogger(__name__)

# Called with (link_id, progress); progress is None when the entry is removed
Listener = Callable[[str, float | None], None]


class ProgressHandle:
    """Write access to one link's registry entry, owned by a single run."""

    def __init__(self, registry: "ProcessingRegistry", link_id: str):
        self._registry = registry
        self.link_id = link_id
        self._finished = False

    @property
    def progress(self) -> float | None:
        return self._registry.get(self.link_id)

    def advance(self, progress: float) -> None:
        """Move progress forward. Values lower than the current one are ignored."""
        if self._finished:
            raise RuntimeError(f"Processing of {self.link_id} already finished")
        self._registry._advance(self.link_id, progress)

    def finish(self) -> None:
        """Remove the entry. Safe to call more than once."""
        if not self._finished:
            self._finished = True
            self._registry._remove(self.link_id)


class ProcessingRegistry:
    """Map from link id to in-flight progress in [0, 1].

    Entries exist only while a run is active. All operations are
    synchronous, so observers never see a half-applied update.
    """

    def __init__(self) -> None:
        self._progress: dict[str, float] = {}
        self._listeners: list[Listener] = []

    def __contains__(self, link_id: str) -> bool:
        return link_id in self._progress

    def __len__(self) -> int:
        return len(self._progress)

    def is_processing(self, link_id: str) -> bool:
        return link_id in self._progress

    def get(self, link_id: str) -> float | None:
        return self._progress.get(link_id)

    def snapshot(self) -> dict[str, float]:
        return dict(self._progress)

    def start(self, link_id: str, progress: float = 0.1) -> ProgressHandle:
        if link_id in self._progress:
            raise AlreadyProcessingError(f"Link {link_id} is already being processed")
        _check_range(progress)
        self._progress[link_id] = progress
        self._notify(link_id, progress)
        return ProgressHandle(self, link_id)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a change listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _advance(self, link_id: str, progress: float) -> None:
        _check_range(progress)
        current = self._progress.get(link_id)
        if current is None:
            raise KeyError(link_id)
        if progress <= current:
            return
        self._progress[link_id] = progress
        self._notify(link_id, progress)

    def _remove(self, link_id: str) -> None:
        if self._progress.pop(link_id, None) is not None:
            self._notify(link_id, None)

    def _notify(self, link_id: str, progress: float | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(link_id, progress)
            except Exception:
                logger.exception(f"Progress listener failed for {link_id}")


def _check_range(progress: float) -> None:
    if not 0.0 <= progress <= 1.0:
        raise ValueError(f"Progress must be within [0, 1], got {progress}")
