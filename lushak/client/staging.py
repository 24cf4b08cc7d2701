"""
File staging for the contact form.

``FileStagingStore`` holds the attachments picked by the user before the form
is sent. Every operation returns a fresh immutable ``StagingSnapshot``; the
store never mutates a snapshot it already handed out.

Images get a preview handle from a ``PreviewHandleRegistry`` (the browser's
object URLs, or ``InMemoryPreviewRegistry``). A handle is released exactly
once: when its file is removed, or when the store is cleared.
"""
from __future__ import annotations

import logging
import mimetypes
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from lushak.schemas.contact import MAX_FILES, MAX_TOTAL_SIZE_BYTES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LocalFile:
    """A file picked on the client, with its declared metadata."""

    name: str
    content_type: str
    data: bytes = field(repr=False)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")

    @classmethod
    def from_path(cls, path, content_type: Optional[str] = None) -> "LocalFile":
        path = Path(path)
        guessed, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            content_type=content_type or guessed or "application/octet-stream",
            data=path.read_bytes(),
        )


class PreviewHandleError(RuntimeError):
    """Raised when a preview handle is used after release or never existed."""


class PreviewHandleRegistry(Protocol):
    def allocate(self, file: LocalFile) -> str: ...

    def release(self, handle: str) -> None: ...


class InMemoryPreviewRegistry:
    """Issues ``blob:`` style handles and tracks which ones are still live."""

    def __init__(self) -> None:
        self._live: Dict[str, LocalFile] = {}
        self.released: List[str] = []

    def allocate(self, file: LocalFile) -> str:
        handle = f"blob:{uuid.uuid4()}"
        self._live[handle] = file
        return handle

    def release(self, handle: str) -> None:
        if handle not in self._live:
            raise PreviewHandleError(f"preview handle {handle} is not live")
        del self._live[handle]
        self.released.append(handle)

    def resolve(self, handle: str) -> LocalFile:
        try:
            return self._live[handle]
        except KeyError:
            raise PreviewHandleError(f"preview handle {handle} is not live") from None

    @property
    def live_handles(self) -> Tuple[str, ...]:
        return tuple(self._live)


@dataclass(frozen=True)
class StagedFile:
    file: LocalFile
    preview: Optional[str] = None

    @property
    def name(self) -> str:
        return self.file.name

    @property
    def size(self) -> int:
        return self.file.size

    @property
    def content_type(self) -> str:
        return self.file.content_type

    @property
    def is_image(self) -> bool:
        return self.file.is_image

    @property
    def label(self) -> str:
        """Display label for non-image entries: the upper-cased extension."""
        suffix = Path(self.file.name).suffix.lstrip(".")
        return suffix.upper() if suffix else "FILE"


@dataclass(frozen=True)
class StagingSnapshot:
    files: Tuple[StagedFile, ...] = ()

    def __len__(self) -> int:
        return len(self.files)

    def __iter__(self):
        return iter(self.files)

    def __getitem__(self, index: int) -> StagedFile:
        return self.files[index]

    @property
    def total_bytes(self) -> int:
        return sum(f.size for f in self.files)

    @property
    def names(self) -> List[str]:
        return [f.name for f in self.files]


class StagingCondition(str, Enum):
    CAPACITY_EXCEEDED = "capacity_exceeded"
    SIZE_EXCEEDED = "size_exceeded"


@dataclass(frozen=True)
class AddResult:
    snapshot: StagingSnapshot
    conditions: Tuple[StagingCondition, ...] = ()
    dropped: Tuple[LocalFile, ...] = ()


class FileStagingStore:
    def __init__(
        self,
        previews: Optional[PreviewHandleRegistry] = None,
        max_files: int = MAX_FILES,
        max_total_bytes: int = MAX_TOTAL_SIZE_BYTES,
    ) -> None:
        self.previews = previews if previews is not None else InMemoryPreviewRegistry()
        self.max_files = max_files
        self.max_total_bytes = max_total_bytes
        self._snapshot = StagingSnapshot()

    @property
    def snapshot(self) -> StagingSnapshot:
        return self._snapshot

    def add(self, files: Iterable[LocalFile]) -> AddResult:
        """Append files in arrival order, truncating at the count or size cap."""
        incoming = list(files)
        staged = list(self._snapshot.files)
        total = self._snapshot.total_bytes
        conditions: List[StagingCondition] = []
        dropped: Tuple[LocalFile, ...] = ()

        for position, file in enumerate(incoming):
            if len(staged) >= self.max_files:
                conditions.append(StagingCondition.CAPACITY_EXCEEDED)
            elif total + file.size > self.max_total_bytes:
                conditions.append(StagingCondition.SIZE_EXCEEDED)
            if conditions:
                dropped = tuple(incoming[position:])
                break
            # Previews are only allocated for files that actually stay staged
            preview = self.previews.allocate(file) if file.is_image else None
            staged.append(StagedFile(file=file, preview=preview))
            total += file.size

        if dropped:
            logger.info(
                "Staging dropped %d file(s): %s",
                len(dropped),
                ", ".join(c.value for c in conditions),
            )

        self._snapshot = StagingSnapshot(tuple(staged))
        return AddResult(snapshot=self._snapshot, conditions=tuple(conditions), dropped=dropped)

    def remove(self, index: int) -> StagingSnapshot:
        """Drop the file at ``index``. Out-of-range indexes are ignored."""
        files = self._snapshot.files
        if not 0 <= index < len(files):
            return self._snapshot

        entry = files[index]
        if entry.preview is not None:
            self.previews.release(entry.preview)
        self._snapshot = StagingSnapshot(files[:index] + files[index + 1:])
        return self._snapshot

    def clear(self) -> StagingSnapshot:
        """Empty the store, then release every preview handle it held.

        Every handle is attempted once; the first release error is re-raised
        after the others have been released.
        """
        entries = self._snapshot.files
        self._snapshot = StagingSnapshot()
        first_error: Optional[Exception] = None
        for entry in entries:
            if entry.preview is None:
                continue
            try:
                self.previews.release(entry.preview)
            except Exception as exc:
                logger.warning("Failed to release preview handle %s: %s", entry.preview, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
        return self._snapshot
