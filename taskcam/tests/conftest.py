"""Shared pytest fixtures for TaskCam tests.

ffmpeg never runs here: encoders are ``FakeProcess`` objects handed out
by a patched ``subprocess.Popen``, and the compositor's
``subprocess.run`` is replaced per test.
"""

import os
import subprocess
import threading
from typing import Dict, List, Optional

import pytest

from app.errors import CompositeError
from app.lifecycle import RecordingLifecycle
from app.models import CaptureSourceDescriptor, SOURCE_DISPLAY, SOURCE_WEBCAM
from app.record_store import InMemoryRecordStore
from app.settings import RecorderSettings


# ── Fake encoder processes ─────────────────────────────────────────


class FakeStream:
    def __init__(self, data: bytes = b"", name: str = "", events: Optional[list] = None) -> None:
        self.data = data
        self.name = name
        self.events = events if events is not None else []
        self.written = bytearray()
        self.flushes = 0
        self.closed = False

    def write(self, b: bytes) -> int:
        if self.closed:
            raise ValueError("write to closed file")
        self.written += b
        self.events.append(("signal", self.name))
        return len(b)

    def flush(self) -> None:
        self.flushes += 1

    def read(self) -> bytes:
        return self.data

    def readline(self) -> bytes:
        line, sep, rest = self.data.partition(b"\n")
        self.data = rest
        return line + sep

    def close(self) -> None:
        self.closed = True


class FakeProcess:
    """Minimal ``subprocess.Popen`` stand-in for a capture encoder.

    On a normal exit it writes *output_size* bytes to the output path
    (the last command-line argument), like ffmpeg finalising its MP4.
    """

    def __init__(
        self,
        args: List[str],
        events: list,
        exit_immediately: bool = False,
        returncode: int = 0,
        stderr: bytes = b"",
        hang: bool = False,
        output_size: int = 0,
    ) -> None:
        self.args = args
        self.output = args[-1]
        self.events = events
        self.stdin = FakeStream(name=self.output, events=events)
        self.stderr = FakeStream(stderr)
        self._exit_code = returncode
        self.returncode: Optional[int] = returncode if exit_immediately else None
        self.hang = hang
        self.killed = False
        self.output_size = output_size
        self.wait_timeouts: List[Optional[float]] = []

    def poll(self) -> Optional[int]:
        return self.returncode

    def wait(self, timeout: Optional[float] = None) -> int:
        self.wait_timeouts.append(timeout)
        if self.returncode is None:
            if self.hang and not self.killed:
                raise subprocess.TimeoutExpired(self.args, timeout)
            self.returncode = self._exit_code
            if self.output_size:
                with open(self.output, "wb") as f:
                    f.write(b"\x00" * self.output_size)
        self.events.append(("wait", self.output))
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9


class EncoderFactory:
    """Patched in for ``subprocess.Popen``; records every spawn.

    Behaviour is chosen by substrings of the output path, e.g.
    ``factory.exit_on.add("_webcam")`` makes the webcam encoder die on
    startup.
    """

    def __init__(self) -> None:
        self.procs: List[FakeProcess] = []
        self.events: list = []
        self.exit_on: set = set()
        self.oserror_on: set = set()
        self.hang_on: set = set()
        self.output_size = 0

    def __call__(self, cmd, **kwargs) -> FakeProcess:
        out = os.path.basename(cmd[-1])
        if any(s in out for s in self.oserror_on):
            raise FileNotFoundError(2, "No such file or directory", cmd[0])
        dies = any(s in out for s in self.exit_on)
        proc = FakeProcess(
            list(cmd),
            self.events,
            exit_immediately=dies,
            returncode=1 if dies else 0,
            stderr=b"Could not find video device" if dies else b"",
            hang=any(s in out for s in self.hang_on),
            output_size=self.output_size,
        )
        proc.popen_kwargs = kwargs
        self.procs.append(proc)
        return proc

    def by_output(self, fragment: str) -> FakeProcess:
        return next(p for p in self.procs if fragment in os.path.basename(p.output))


@pytest.fixture
def encoders(monkeypatch) -> EncoderFactory:
    factory = EncoderFactory()
    monkeypatch.setattr("app.capture_session.subprocess.Popen", factory)
    monkeypatch.setattr("app.capture_session._ffmpeg_exe", lambda: "ffmpeg")
    monkeypatch.setattr("app.capture_session.QUIT_GRACE_S", 0)
    return factory


# ── Sources ────────────────────────────────────────────────────────


@pytest.fixture
def two_displays() -> List[CaptureSourceDescriptor]:
    """Primary 1920×1080 at origin plus a 1280×1024 to its right."""
    return [
        CaptureSourceDescriptor(
            id="1", name="Display 1", kind=SOURCE_DISPLAY,
            width=1920, height=1080, is_primary=True, left=0, top=0,
        ),
        CaptureSourceDescriptor(
            id="2", name="Display 2", kind=SOURCE_DISPLAY,
            width=1280, height=1024, left=1920, top=0,
        ),
    ]


@pytest.fixture
def webcam() -> CaptureSourceDescriptor:
    return CaptureSourceDescriptor(id="Integrated Camera", name="Integrated Camera", kind=SOURCE_WEBCAM)


class FakeCatalog:
    def __init__(self, displays, webcams=None) -> None:
        self.displays = list(displays)
        self.webcams = list(webcams or [])
        self.display_calls = 0

    def list_displays(self):
        self.display_calls += 1
        return list(self.displays)

    def list_webcams(self):
        return list(self.webcams)

    def first_webcam(self):
        return self.webcams[0] if self.webcams else None


@pytest.fixture
def catalog(two_displays, webcam) -> FakeCatalog:
    return FakeCatalog(two_displays, [webcam])


# ── Sessions ───────────────────────────────────────────────────────


class FakeSession:
    """Stands in for CaptureSession; writes its 'recordings' on stop."""

    def __init__(self, sources, prefix, webcam, files: Dict[str, int],
                 start_error: Optional[Exception] = None,
                 block: Optional[threading.Event] = None) -> None:
        self.sources = tuple(sources)
        self.output_path_prefix = prefix
        self.webcam = webcam
        self.files = files
        self.start_error = start_error
        self.block = block
        self.stop_entered = threading.Event()
        self.started = False
        self.stop_calls = 0

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    def stop(self) -> None:
        self.stop_calls += 1
        self.stop_entered.set()
        if self.block is not None:
            self.block.wait(5)
        for suffix, size in self.files.items():
            with open(f"{self.output_path_prefix}_{suffix}.mp4", "wb") as f:
                f.write(b"\x00" * size)


class FakeSessionFactory:
    """Session factory for RecordingLifecycle; configure before start()."""

    def __init__(self) -> None:
        self.files: Dict[str, int] = {"display_0": 500, "display_1": 400, "webcam": 300}
        self.start_error: Optional[Exception] = None
        self.block: Optional[threading.Event] = None
        self.sessions: List[FakeSession] = []

    def __call__(self, sources, prefix, webcam) -> FakeSession:
        s = FakeSession(sources, prefix, webcam, dict(self.files),
                        start_error=self.start_error, block=self.block)
        self.sessions.append(s)
        return s

    @property
    def last(self) -> FakeSession:
        return self.sessions[-1]


@pytest.fixture
def sessions() -> FakeSessionFactory:
    return FakeSessionFactory()


# ── Compositor ─────────────────────────────────────────────────────


class FakeCompositor:
    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.fail = False

    def combine(self, files, output) -> None:
        self.calls.append((list(files), output))
        if self.fail:
            raise CompositeError("Invalid data found when processing input", 1)
        with open(output, "wb") as f:
            f.write(b"\x01" * 1000)


@pytest.fixture
def compositor() -> FakeCompositor:
    return FakeCompositor()


# ── Lifecycle ──────────────────────────────────────────────────────


@pytest.fixture
def settings(tmp_path) -> RecorderSettings:
    return RecorderSettings(
        output_dir=str(tmp_path / "videos"),
        settle_interval_s=0,
        spawn_check_s=0,
        stop_timeout_s=5,
    )


@pytest.fixture
def lifecycle(settings, catalog, sessions, compositor) -> RecordingLifecycle:
    return RecordingLifecycle(
        settings=settings,
        catalog=catalog,
        record_store=InMemoryRecordStore(),
        session_factory=sessions,
        compositor=compositor,
    )


# ── Files ──────────────────────────────────────────────────────────


def write_bytes(path: str, size: int) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(b"\x00" * size)
    return path


@pytest.fixture
def prefix(tmp_path) -> str:
    return str(tmp_path / "task_7_rec_20260101_120000")


