"""Filesystem change events."""

import os
from dataclasses import dataclass
from enum import Flag, auto

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
)


class Op(Flag):
    """Operation kinds a single notification may carry."""

    CREATE = auto()
    WRITE = auto()
    REMOVE = auto()
    RENAME = auto()
    CHMOD = auto()


UPLOAD_OPS = Op.CREATE | Op.WRITE

# watchdog reports attribute changes as "modified", so CHMOD never appears on its own
_WATCHDOG_OPS = {
    EVENT_TYPE_CREATED: Op.CREATE,
    EVENT_TYPE_MODIFIED: Op.WRITE,
    EVENT_TYPE_DELETED: Op.REMOVE,
    EVENT_TYPE_MOVED: Op.RENAME,
}


@dataclass(frozen=True)
class FileChangeEvent:
    """A raw notification for one path."""

    path: str
    op: Op

    @property
    def triggers_upload(self) -> bool:
        """True when the event carries a create or write."""
        return bool(self.op & UPLOAD_OPS)

    @classmethod
    def from_watchdog(cls, event: FileSystemEvent) -> "FileChangeEvent":
        """Convert a watchdog event.

        Args:
            event: Event delivered by the observer thread

        Returns:
            FileChangeEvent with the event's path left exactly as reported
        """
        op = _WATCHDOG_OPS.get(event.event_type, Op(0))
        return cls(path=os.fsdecode(event.src_path), op=op)

    @classmethod
    def from_move_destination(cls, event: FileSystemEvent) -> "FileChangeEvent":
        """Describe the target of a watchdog move as a newly created file.

        A file renamed into place (temp file then rename) only exists under
        its destination name, so the destination is reported as a create.
        """
        return cls(path=os.fsdecode(event.dest_path), op=Op.CREATE)
