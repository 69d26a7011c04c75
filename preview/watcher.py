"""Feed watchdog filesystem notifications into a :class:`BroadcastHub`."""

from __future__ import annotations

import logging
import os
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, Optional, Set

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .broadcast_hub import BroadcastHub, ChangeEvent, ChangeKind
from .config import DEFAULT_QUEUE_SIZE

logger = logging.getLogger(__name__)

EVENT_KINDS = {
    "created": ChangeKind.CREATED,
    "modified": ChangeKind.MODIFIED,
    "moved": ChangeKind.MODIFIED,
    "deleted": ChangeKind.REMOVED,
    "opened": ChangeKind.ACCESS,
    "closed": ChangeKind.ACCESS,
    "closed_no_write": ChangeKind.ACCESS,
}


def to_change_event(event: FileSystemEvent) -> ChangeEvent:
    """Normalize a watchdog event."""
    kind = EVENT_KINDS.get(event.event_type, ChangeKind.OTHER)
    paths = [event.src_path]
    dest_path = getattr(event, "dest_path", "")
    if dest_path:
        paths.append(dest_path)
    return ChangeEvent(kind, tuple(Path(os.fsdecode(p)) for p in paths if p))


class ChangeForwarder(FileSystemEventHandler):
    """Forward filesystem events from the observer thread to the hub.

    When ``only`` is given, events for other paths in the watched directory
    are ignored; this is how single files are watched.
    """

    def __init__(self, hub: BroadcastHub, only: Optional[Set[Path]] = None) -> None:
        super().__init__()
        self.hub = hub
        self.only = only

    def on_any_event(self, event: FileSystemEvent) -> None:
        try:
            change = to_change_event(event)
            if self.only is not None and not any(p.resolve() in self.only for p in change.paths):
                return
            self.hub.publish(change)
        except Exception:  # pragma: no cover - the observer thread must keep running
            logger.exception("Failed to forward filesystem event %r", event)


def start_watching(
    root_paths: Iterable[Path],
    recursive: bool = True,
    queue_size: int = DEFAULT_QUEUE_SIZE,
    hub: Optional[BroadcastHub] = None,
) -> BroadcastHub:
    """Start observing ``root_paths`` and return the hub that receives the changes.

    Directories are observed directly. Files are observed through their parent
    directory with a filter, since not every platform can watch a single file.
    Closing the hub stops the observer.
    """
    hub = hub or BroadcastHub(queue_size=queue_size)
    observer = Observer()

    files_by_parent: Dict[Path, Set[Path]] = defaultdict(set)
    for raw_path in root_paths:
        path = Path(raw_path).resolve()
        if path.is_dir():
            observer.schedule(ChangeForwarder(hub), str(path), recursive=recursive)
            logger.debug("watching directory: %s", path)
        elif path.parent.is_dir():
            files_by_parent[path.parent].add(path)
        else:
            logger.warning("Cannot watch missing path: %s", path)

    for parent, files in files_by_parent.items():
        observer.schedule(ChangeForwarder(hub, only=files), str(parent), recursive=False)
        logger.debug("watching files: %s", ", ".join(sorted(str(f) for f in files)))

    observer.start()
    hub.attach_observer(observer)
    return hub
