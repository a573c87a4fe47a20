"""
Observable per-playlist state, in-flight task tracking and change events.

PlaylistState holds the flags a front end shows next to a playlist
(scanning, removing, checked, duplicate count, last error). Every change
is published on the EventBus as a SyncEvent carrying only the fields that
actually changed, so subscribers never have to poll.

TaskRegistry keeps at most one in-flight operation per playlist. Starting
a new operation for a playlist cancels the previous one: a removal started
while a scan is running supersedes the scan, and a new scan supersedes an
unfinished removal. Nothing is ever queued.
"""

import asyncio
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Coroutine

from spot_dedup.core.logger import get_logger


logger = get_logger(__name__)


@dataclass
class PlaylistState:
    """
    UI-facing state of one playlist.

    Attributes:
        is_scanning: A scan is in flight.
        is_removing: A removal run is in flight.
        has_checked_once: At least one scan or up-to-date check completed
                          during this session (cleared when a scan fails).
        duplicate_count: Duplicates found by the latest completed scan.
        last_error: Message of the latest failure, None after a success.
    """
    is_scanning: bool = False
    is_removing: bool = False
    has_checked_once: bool = False
    duplicate_count: int = 0
    last_error: str | None = None

    def diff(self, **changes: Any) -> dict[str, Any]:
        """
        Apply changes and return the subset that actually changed.

        Raises:
            AttributeError: If a change names an unknown field.
        """
        known = {f.name for f in fields(self)}
        changed: dict[str, Any] = {}
        for name, value in changes.items():
            if name not in known:
                raise AttributeError(f"PlaylistState has no field '{name}'")
            if getattr(self, name) != value:
                setattr(self, name, value)
                changed[name] = value
        return changed


class OperationKind(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    REMOVING = "removing"


@dataclass
class PlaylistOperation:
    """The operation currently registered for a playlist."""
    kind: OperationKind = OperationKind.IDLE
    task: asyncio.Task | None = None

    @property
    def is_active(self) -> bool:
        return self.task is not None and not self.task.done()


class TaskRegistry:
    """
    One in-flight operation handle per playlist uri.

    Must be used from the event loop thread.

    Example:
        task = registry.start(uri, OperationKind.SCANNING, scan_coro)
        await asyncio.wait({task})
        if task.cancelled():
            ...  # superseded by a newer operation
    """

    def __init__(self) -> None:
        self._operations: dict[str, PlaylistOperation] = {}

    def current(self, uri: str) -> PlaylistOperation:
        return self._operations.get(uri, PlaylistOperation())

    def start(self, uri: str, kind: OperationKind, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """
        Cancel whatever is running for uri and run coro as its operation.

        Returns:
            The new task. When it finishes, the slot returns to IDLE unless
            a newer operation has replaced it in the meantime.
        """
        previous = self._operations.get(uri)
        if previous is not None and previous.is_active:
            logger.debug(f"Cancelling {previous.kind.value} of {uri} for {kind.value}")
            previous.task.cancel()

        task = asyncio.ensure_future(coro)
        self._operations[uri] = PlaylistOperation(kind=kind, task=task)

        def _release(finished: asyncio.Task) -> None:
            operation = self._operations.get(uri)
            if operation is not None and operation.task is finished:
                del self._operations[uri]

        task.add_done_callback(_release)
        return task

    def cancel(self, uri: str) -> bool:
        """Cancel the in-flight operation for uri. Returns True if one was running."""
        operation = self._operations.get(uri)
        if operation is None or not operation.is_active:
            return False
        operation.task.cancel()
        return True

    def cancel_all(self) -> list[asyncio.Task]:
        """Cancel every in-flight operation and return the cancelled tasks."""
        cancelled = []
        for operation in list(self._operations.values()):
            if operation.is_active:
                operation.task.cancel()
                cancelled.append(operation.task)
        return cancelled

    def active_count(self) -> int:
        return sum(1 for operation in self._operations.values() if operation.is_active)


class EventKind(str, Enum):
    STATE_CHANGED = "state_changed"
    PLAYLIST_ADDED = "playlist_added"
    PLAYLIST_REMOVED = "playlist_removed"
    PROGRESS = "progress"
    SUMMARY = "summary"


@dataclass(frozen=True)
class SyncEvent:
    """
    A change published by the orchestrator.

    Attributes:
        kind: What happened.
        playlist_uri: Playlist concerned, None for aggregate events.
        changes: STATE_CHANGED: the changed PlaylistState fields.
                 PROGRESS: {"completed", "total"}.
                 SUMMARY: summary fields.
    """
    kind: EventKind
    playlist_uri: str | None = None
    changes: dict[str, Any] = field(default_factory=dict)


class EventBus:
    """
    Fan-out of SyncEvents to any number of asyncio.Queue subscribers.

    Queues are unbounded; emit() never blocks.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue] = []

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def emit(self, event: SyncEvent) -> None:
        for queue in self._subscribers:
            queue.put_nowait(event)
