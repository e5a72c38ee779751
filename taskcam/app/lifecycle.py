"""Recording lifecycle — start / pause / resume / stop for one task at a time.

State lives in a single ``RecordingStatus`` guarded by a lock.  ``stop``
flips the status back to idle *before* doing any teardown, so a second
``stop`` (or a ``get_status`` from the UI) never waits behind the
encoder shutdown, settle delay and composite encode that follow.

Stop pipeline::

    stop encoders → settle → scan artifacts → (0) error
                                            → (1) use as-is
                                            → (N) grid composite
                                                  ok:   delete per-source files
                                                  fail: keep them, copy first clip
"""

import glob
import logging
import os
import shutil
import threading
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence

from PySide6.QtCore import QObject, Signal

from .artifacts import ArtifactValidator, combined_path, probe_duration_seconds
from .capture_session import CaptureSession
from .compositor import GridCompositor
from .errors import (
    AlreadyRecordingError,
    CompositeError,
    NoUsableArtifactsError,
    NotRecordingError,
    PersistenceError,
    RecorderError,
    SpawnError,
)
from .models import CaptureSourceDescriptor, MediaArtifact, RecordingStatus
from .record_store import InMemoryRecordStore, RecordStore
from .settings import RecorderSettings
from .sources import CaptureSourceCatalog

logger = logging.getLogger(__name__)

SessionFactory = Callable[
    [Sequence[CaptureSourceDescriptor], str, Optional[CaptureSourceDescriptor]],
    CaptureSession,
]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class RecordingLifecycle(QObject):
    """The recorder as seen by the command layer."""

    recording_started = Signal(str)   # artifact path prefix
    status_changed = Signal(object)   # RecordingStatus snapshot
    recording_stopped = Signal(str)   # final video path
    composite_failed = Signal(str)    # ffmpeg diagnostic (stop still succeeded)
    stop_finished = Signal(str)       # stop_async() result
    stop_failed = Signal(str)

    def __init__(
        self,
        settings: Optional[RecorderSettings] = None,
        catalog: Optional[CaptureSourceCatalog] = None,
        record_store: Optional[RecordStore] = None,
        session_factory: Optional[SessionFactory] = None,
        compositor: Optional[GridCompositor] = None,
        validator: Optional[ArtifactValidator] = None,
        parent: QObject | None = None,
    ) -> None:
        super().__init__(parent)
        self._settings = settings or RecorderSettings()
        self._catalog = catalog or CaptureSourceCatalog()
        self._store = record_store or InMemoryRecordStore()
        self._session_factory = session_factory or self._default_session
        self._compositor = compositor or GridCompositor(
            canvas_width=self._settings.canvas_width,
            canvas_height=self._settings.canvas_height,
            encoder_id=self._settings.composite_encoder,
        )
        self._validator = validator or ArtifactValidator()

        self._lock = threading.Lock()         # guards everything below
        self._start_lock = threading.Lock()   # one start() in flight at a time
        self._status = RecordingStatus()
        self._session: Optional[CaptureSession] = None
        self._prefix: str = ""
        self._last_prefix: str = ""
        self._last_composite_error: Optional[CompositeError] = None
        self._stop_threads: List[threading.Thread] = []

    # ── properties ──────────────────────────────────────────────────

    @property
    def settings(self) -> RecorderSettings:
        return self._settings

    @property
    def record_store(self) -> RecordStore:
        return self._store

    @property
    def last_composite_error(self) -> Optional[CompositeError]:
        """The compositor failure behind the most recent degraded stop."""
        return self._last_composite_error

    # ── public API ──────────────────────────────────────────────────

    def get_status(self) -> RecordingStatus:
        with self._lock:
            return self._status.copy()

    def start(self, task_id: int) -> str:
        """Start recording every display (and the webcam) for *task_id*.

        Returns the artifact path prefix.  Status only changes once the
        encoders are running and the record has been opened.
        """
        with self._start_lock:
            with self._lock:
                if self._status.is_recording:
                    raise AlreadyRecordingError(self._status.active_task_id)

            displays = self._list_displays()
            webcam = self._catalog.first_webcam() if self._settings.webcam_enabled else None
            prefix = self._next_prefix(task_id)

            session = self._session_factory(displays, prefix, webcam)
            session.start()

            try:
                self._store.begin(task_id, combined_path(prefix), _now_iso())
            except PersistenceError:
                logger.error("Could not open record for task %s; stopping capture", task_id)
                session.stop()
                raise

            with self._lock:
                self._status = RecordingStatus(
                    is_recording=True, is_paused=False,
                    duration_seconds=0, active_task_id=task_id,
                )
                self._session = session
                self._prefix = prefix
                snapshot = self._status.copy()

        logger.info("Started recording for task %s → %s", task_id, prefix)
        self.recording_started.emit(prefix)
        self.status_changed.emit(snapshot)
        return prefix

    def pause(self) -> None:
        """Mark the recording paused.  Encoders keep running."""
        self._set_paused(True, "pause recording")
        logger.info("Recording paused")

    def resume(self) -> None:
        self._set_paused(False, "resume recording")
        logger.info("Recording resumed")

    def update_duration(self, seconds: int) -> bool:
        """Store the caller-tracked duration; ignored when not recording."""
        with self._lock:
            if not self._status.is_recording:
                logger.debug("Duration update %ss ignored: not recording", seconds)
                return False
            self._status.duration_seconds = max(0, int(seconds))
        return True

    def stop(self) -> str:
        """Stop recording and produce the final video.  Returns its path.

        Blocks through encoder shutdown, the settle interval and the
        composite encode.
        """
        with self._lock:
            if not self._status.is_recording:
                raise NotRecordingError("stop recording")
            task_id = self._status.active_task_id
            duration = self._status.duration_seconds
            prefix = self._prefix
            session = self._session
            self._session = None
            self._prefix = ""
            self._status.reset()
            snapshot = self._status.copy()
        self.status_changed.emit(snapshot)

        logger.info("Stopping recording for task %s...", task_id)
        if session is not None:
            session.stop()

        settle = self._settings.settle_interval_s
        if settle > 0:
            logger.info("Waiting %.1fs for video files to finish writing...", settle)
            time.sleep(settle)

        artifacts = self._validator.scan(prefix)
        if not artifacts:
            logger.warning("No valid video files found to combine for %s", prefix)
            raise NoUsableArtifactsError(prefix)

        final_path = self._finalize(prefix, artifacts)

        if duration <= 0:
            probed = probe_duration_seconds(final_path)
            if probed:
                duration = int(round(probed))

        self._store.complete(task_id, duration, _now_iso(), final_path)
        logger.info("Recording stopped successfully for task %s: %s", task_id, final_path)
        self.recording_stopped.emit(final_path)
        return final_path

    def stop_async(self) -> None:
        """Run ``stop()`` on a worker thread; reports via signals."""
        thread = threading.Thread(target=self._stop_worker, daemon=False)
        with self._lock:
            self._stop_threads = [t for t in self._stop_threads if t.is_alive()]
            self._stop_threads.append(thread)
        thread.start()

    def wait_for_stop(self, timeout: Optional[float] = None) -> bool:
        """Join every ``stop_async()`` worker.  True once all have finished."""
        with self._lock:
            threads = list(self._stop_threads)
        deadline = None if timeout is None else time.monotonic() + timeout
        for thread in threads:
            thread.join(None if deadline is None else max(0.0, deadline - time.monotonic()))
        return not any(t.is_alive() for t in threads)

    # ── internal ────────────────────────────────────────────────────

    def _stop_worker(self) -> None:
        try:
            path = self.stop()
        except RecorderError as exc:
            logger.error("Stop failed: %s", exc)
            self.stop_failed.emit(str(exc))
        else:
            self.stop_finished.emit(path)

    def _set_paused(self, paused: bool, operation: str) -> None:
        with self._lock:
            if not self._status.is_recording:
                raise NotRecordingError(operation)
            self._status.is_paused = paused
            snapshot = self._status.copy()
        self.status_changed.emit(snapshot)

    def _default_session(
        self,
        displays: Sequence[CaptureSourceDescriptor],
        prefix: str,
        webcam: Optional[CaptureSourceDescriptor],
    ) -> CaptureSession:
        s = self._settings
        return CaptureSession(
            displays, prefix, webcam=webcam,
            fps=s.capture_fps,
            webcam_size=s.webcam_size,
            stop_timeout_s=s.stop_timeout_s,
            spawn_check_s=s.spawn_check_s,
        )

    def _list_displays(self) -> List[CaptureSourceDescriptor]:
        try:
            displays = self._catalog.list_displays()
        except Exception as exc:
            raise SpawnError("displays", f"display enumeration failed: {exc}") from exc
        if not displays:
            raise SpawnError("displays", "no display sources available")
        return displays

    def _next_prefix(self, task_id: int) -> str:
        """``<output_dir>/task_<id>_rec_<timestamp>``, suffixed ``_N`` on reuse."""
        out_dir = self._settings.output_dir
        try:
            os.makedirs(out_dir, exist_ok=True)
        except OSError as exc:
            raise SpawnError("output directory", f"cannot create {out_dir}: {exc}") from exc

        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        base = os.path.join(out_dir, f"task_{task_id}_rec_{stamp}")
        candidate = base
        n = 1
        while candidate == self._last_prefix or glob.glob(glob.escape(candidate) + "_*"):
            candidate = f"{base}_{n}"
            n += 1
        self._last_prefix = candidate
        return candidate

    def _finalize(self, prefix: str, artifacts: List[MediaArtifact]) -> str:
        self._last_composite_error = None
        if len(artifacts) == 1:
            logger.info("Single recording, no compositing needed: %s", artifacts[0].path)
            return artifacts[0].path

        output = combined_path(prefix)
        try:
            self._compositor.combine([a.path for a in artifacts], output)
        except CompositeError as exc:
            self._last_composite_error = exc
            logger.error("Error combining videos: %s", exc.diagnostic[-500:])
            logger.info("Temporary files preserved at: %s_*.mp4", prefix)
            self.composite_failed.emit(exc.diagnostic)
            return self._fallback_copy(artifacts[0].path, output)

        self._validator.cleanup(artifacts)
        return output

    @staticmethod
    def _fallback_copy(source: str, output: str) -> str:
        """Put a copy of the first clip where the composite should be."""
        logger.info("Using first recording file as fallback: %s", source)
        try:
            shutil.copyfile(source, output)
        except OSError as exc:
            logger.error("Fallback copy to %s failed (%s); returning %s", output, exc, source)
            return source
        return output
