"""Capture session — one ffmpeg encoder per display plus an optional webcam.

Each encoder grabs its source directly (gdigrab / x11grab /
avfoundation, dshow / v4l2 for cameras) and writes an MP4 next to the
session prefix.  Encoders are stopped by sending ``q`` on stdin so
ffmpeg can finalise the container; killing one mid-write leaves an MP4
without its index and the tail of the recording is lost.

Each encoder's stderr is drained on a daemon thread for as long as it
runs.  An undrained pipe fills up (dshow logs every dropped frame at
error level) and ffmpeg then blocks on the write, stops capturing and
never reads the ``q``.
"""

import logging
import subprocess
import threading
import time
from collections import deque
from typing import Dict, List, Optional, Sequence, Tuple

from .artifacts import display_path, webcam_path
from .errors import SpawnError
from .models import CaptureSourceDescriptor, DEFAULT_CAPTURE_FPS
from .utils import (
    ffmpeg_exe as _ffmpeg_exe,
    subprocess_kwargs as _subprocess_kwargs,
    build_capture_command,
    build_display_input_args,
    build_webcam_input_args,
    stderr_tail,
)

logger = logging.getLogger(__name__)

# Pause after each quit signal before moving on to the next encoder
QUIT_GRACE_S = 0.1
# stderr lines kept per encoder for diagnostics
STDERR_TAIL_LINES = 50
# How long to wait for a drain thread to see EOF after its encoder exited
DRAIN_JOIN_S = 2.0


class _StderrDrain:
    """Reads an encoder's stderr on a daemon thread, keeping the last lines."""

    def __init__(self, stream, label: str) -> None:
        self.label = label
        self._lines: deque = deque(maxlen=STDERR_TAIL_LINES)
        self._thread = threading.Thread(
            target=self._run, args=(stream,), name=f"stderr-{label}", daemon=True,
        )
        self._thread.start()

    def _run(self, stream) -> None:
        try:
            for line in iter(stream.readline, b""):
                self._lines.append(line)
        except (OSError, ValueError) as exc:
            # pipe closed under us during teardown
            logger.debug("%s stderr reader stopped: %s", self.label, exc)

    def tail(self, limit: int = 300) -> str:
        """Last *limit* chars of stderr, once the reader has hit EOF."""
        self._thread.join(DRAIN_JOIN_S)
        return stderr_tail(b"".join(list(self._lines)), limit)


def _close_pipes(proc: subprocess.Popen) -> None:
    for stream in (proc.stdin, proc.stderr):
        if stream is None:
            continue
        try:
            stream.close()
        except (OSError, ValueError) as exc:
            logger.debug("Closing encoder pipe failed: %s", exc)


def _start_encoder(
    cmd: List[str], spawn_check_s: float, label: str = "encoder",
) -> Tuple[subprocess.Popen, _StderrDrain]:
    """Launch one capture encoder with stdin kept open for ``q``.

    Returns the process and the drain reading its stderr.  Raises
    ``OSError`` if the binary can't be started and ``RuntimeError``
    (with ffmpeg's stderr) if it exits immediately.
    """
    proc = subprocess.Popen(
        cmd,
        stdin=subprocess.PIPE,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,      # drained for diagnostics
        **_subprocess_kwargs(),
    )
    drain = _StderrDrain(proc.stderr, label)
    # Give ffmpeg a moment to fail on bad args / missing device
    if spawn_check_s > 0:
        time.sleep(spawn_check_s)
    if proc.poll() is not None:
        tail = drain.tail()
        _close_pipes(proc)
        raise RuntimeError(f"ffmpeg exited immediately (rc={proc.returncode}): {tail}")
    return proc, drain


def _signal_quit(proc: subprocess.Popen, label: str) -> None:
    """Ask an encoder to finish its file and exit."""
    if proc.poll() is not None:
        logger.warning("%s encoder already exited (rc=%s)", label, proc.returncode)
        return
    try:
        if proc.stdin and not proc.stdin.closed:
            proc.stdin.write(b"q")
            proc.stdin.flush()
    except (BrokenPipeError, OSError, ValueError) as exc:
        logger.warning("Could not signal %s encoder: %s", label, exc)


def _wait_encoder(
    proc: subprocess.Popen, label: str, timeout: Optional[float],
    drain: Optional[_StderrDrain] = None,
) -> None:
    """Block until the encoder exits; kill it if *timeout* expires."""
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(
            "%s encoder did not exit within %.0fs, killing it (file may be truncated)",
            label, timeout,
        )
        proc.kill()
        proc.wait()
    tail = drain.tail() if drain is not None else ""
    if tail and proc.returncode != 0:
        logger.warning("%s ffmpeg stderr: %s", label, tail)
    _close_pipes(proc)


class CaptureSession:
    """Owns the encoder subprocesses of one recording.

    Usable as a context manager; a session that is garbage-collected
    while encoders are still running stops them the same graceful way.
    """

    def __init__(
        self,
        sources: Sequence[CaptureSourceDescriptor],
        output_path_prefix: str,
        webcam: Optional[CaptureSourceDescriptor] = None,
        fps: int = DEFAULT_CAPTURE_FPS,
        webcam_size: str = "640x480",
        stop_timeout_s: Optional[float] = 30.0,
        spawn_check_s: float = 0.05,
    ) -> None:
        self.sources: Tuple[CaptureSourceDescriptor, ...] = tuple(sources)
        self.webcam = webcam
        self.output_path_prefix = output_path_prefix
        self.fps = fps
        self.webcam_size = webcam_size
        self.stop_timeout_s = stop_timeout_s
        self.spawn_check_s = spawn_check_s
        self.child_handles: List[subprocess.Popen] = []
        self.webcam_handle: Optional[subprocess.Popen] = None
        self._drains: Dict[subprocess.Popen, _StderrDrain] = {}
        self._lock = threading.Lock()

    # ── properties ──────────────────────────────────────────────────

    @property
    def is_live(self) -> bool:
        return bool(self.child_handles) or self.webcam_handle is not None

    # ── public API ──────────────────────────────────────────────────

    def start(self) -> None:
        """Spawn every encoder.

        A display that fails to start aborts the whole session (the
        displays already running are stopped first).  A webcam that fails
        is only logged; screen capture goes on without it.
        """
        if self.is_live:
            raise RuntimeError("capture session already started")

        try:
            ffmpeg = _ffmpeg_exe()
        except (OSError, RuntimeError) as exc:
            raise SpawnError("encoder", f"ffmpeg not found: {exc}") from exc
        logger.info(
            "Starting capture: %d display(s)%s at %d fps → %s_*",
            len(self.sources), " + webcam" if self.webcam else "",
            self.fps, self.output_path_prefix,
        )

        for idx, source in enumerate(self.sources):
            out = display_path(self.output_path_prefix, idx)
            cmd = build_capture_command(ffmpeg, build_display_input_args(source, self.fps), out)
            logger.info("Launching display %d encoder: %s", idx, " ".join(cmd))
            try:
                proc, drain = _start_encoder(cmd, self.spawn_check_s, f"display-{idx}")
            except (OSError, RuntimeError) as exc:
                logger.error("Display %d (%s) failed to start: %s", idx, source.name, exc)
                self.stop()
                raise SpawnError(f"display {idx} ({source.name})", str(exc)) from exc
            with self._lock:
                self.child_handles.append(proc)
                self._drains[proc] = drain
            logger.info("Started recording display %d to %s", idx, out)

        if self.webcam is not None:
            out = webcam_path(self.output_path_prefix)
            cmd = build_capture_command(
                ffmpeg,
                build_webcam_input_args(self.webcam, self.fps, self.webcam_size),
                out,
            )
            logger.info("Launching webcam encoder: %s", " ".join(cmd))
            try:
                proc, drain = _start_encoder(cmd, self.spawn_check_s, "webcam")
            except (OSError, RuntimeError) as exc:
                logger.warning(
                    "Webcam %s failed to start, continuing with displays only: %s",
                    self.webcam.name, exc,
                )
            else:
                with self._lock:
                    self.webcam_handle = proc
                    self._drains[proc] = drain
                logger.info("Started recording webcam to %s", out)

    def stop(self) -> None:
        """Signal every encoder to quit, then wait for each to exit.

        Displays are signalled first, then the webcam; waiting follows
        the same order.  Safe to call more than once.
        """
        with self._lock:
            handles = [(f"Display {i}", p) for i, p in enumerate(self.child_handles)]
            if self.webcam_handle is not None:
                handles.append(("Webcam", self.webcam_handle))
            drains = {p: self._drains.pop(p, None) for _, p in handles}
            self.child_handles = []
            self.webcam_handle = None
        if not handles:
            return

        logger.info("Stopping %d encoder(s)...", len(handles))
        for label, proc in handles:
            _signal_quit(proc, label)
            time.sleep(QUIT_GRACE_S)

        for label, proc in handles:
            _wait_encoder(proc, label, self.stop_timeout_s, drains[proc])
            logger.info("%s encoder exited (rc=%s)", label, proc.returncode)

        logger.info("Recording stopped gracefully")

    # ── scoped release ──────────────────────────────────────────────

    def __enter__(self) -> "CaptureSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def __del__(self) -> None:
        if not getattr(self, "_lock", None) or not self.is_live:
            return
        logger.warning("Capture session %s dropped while recording; stopping encoders",
                       self.output_path_prefix)
        try:
            self.stop()
        except Exception as exc:
            logger.error("Failed to stop encoders on release: %s", exc)
