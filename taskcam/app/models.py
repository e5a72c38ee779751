"""Core data models for TaskCam.

Defines the dataclasses shared by the capture, validation and
compositing stages: capture sources, the recording status snapshot,
per-source media artifacts, the grid layout and the record-store entry.
Record-store entries round-trip through ``to_dict()`` / ``from_dict()``;
source descriptors serialise one way for ``taskcam sources --json``.
"""

from dataclasses import dataclass, replace
from typing import Optional, Tuple

SOURCE_DISPLAY = "display"
SOURCE_WEBCAM = "webcam"

STATUS_RECORDING = "recording"
STATUS_COMPLETED = "completed"

CANVAS_WIDTH = 1920
CANVAS_HEIGHT = 1080
DEFAULT_CAPTURE_FPS = 15


@dataclass(frozen=True)
class CaptureSourceDescriptor:
    """Snapshot of one capturable source (a display or a camera).

    Display geometry is in **physical desktop pixels**; ``left``/``top``
    locate the display on the virtual desktop.
    """
    id: str
    name: str
    kind: str  # SOURCE_DISPLAY | SOURCE_WEBCAM
    width: Optional[int] = None
    height: Optional[int] = None
    is_primary: bool = False
    left: int = 0
    top: int = 0

    def to_dict(self) -> dict:
        d = {"id": self.id, "name": self.name, "kind": self.kind}
        if self.width is not None:
            d["width"] = self.width
        if self.height is not None:
            d["height"] = self.height
        if self.kind == SOURCE_DISPLAY:
            d["isPrimary"] = self.is_primary
            d["left"] = self.left
            d["top"] = self.top
        return d


@dataclass
class RecordingStatus:
    """Process-wide recording state.

    Invariants: ``is_paused`` implies ``is_recording``, and
    ``active_task_id`` is set exactly while recording.
    """
    is_recording: bool = False
    is_paused: bool = False
    duration_seconds: int = 0
    active_task_id: Optional[int] = None

    def copy(self) -> "RecordingStatus":
        return replace(self)

    def reset(self) -> None:
        """Return to idle."""
        self.is_recording = False
        self.is_paused = False
        self.duration_seconds = 0
        self.active_task_id = None


@dataclass(frozen=True)
class MediaArtifact:
    """A per-source intermediate video found on disk after a session."""
    path: str
    byte_size: int
    kind: str = SOURCE_DISPLAY
    index: Optional[int] = None  # display index; None for the webcam

    @property
    def is_usable(self) -> bool:
        return self.byte_size > 0


@dataclass(frozen=True)
class GridLayout:
    """Rows/cols of the composite grid and the size of one cell (px)."""
    rows: int
    cols: int
    cell_width: int
    cell_height: int

    @property
    def capacity(self) -> int:
        return self.rows * self.cols

    def cell_origin(self, index: int) -> Tuple[int, int]:
        """Top-left ``(x, y)`` of cell *index*, filled row-major."""
        if index < 0 or index >= self.capacity:
            raise IndexError(f"cell {index} outside {self.rows}x{self.cols} grid")
        row, col = divmod(index, self.cols)
        return col * self.cell_width, row * self.cell_height


@dataclass
class RecordingRecord:
    """One row in the record store — a single recording of a task."""
    task_id: int
    start_time: str  # ISO 8601
    file_path: str
    status: str = STATUS_RECORDING
    duration_seconds: int = 0
    end_time: Optional[str] = None

    def to_dict(self) -> dict:
        d = {
            "taskId": self.task_id,
            "startTime": self.start_time,
            "filePath": self.file_path,
            "status": self.status,
            "duration": self.duration_seconds,
        }
        if self.end_time:
            d["endTime"] = self.end_time
        return d

    @staticmethod
    def from_dict(d: dict) -> "RecordingRecord":
        return RecordingRecord(
            task_id=d["taskId"],
            start_time=d["startTime"],
            file_path=d["filePath"],
            status=d.get("status", STATUS_RECORDING),
            duration_seconds=d.get("duration", 0),
            end_time=d.get("endTime"),
        )
