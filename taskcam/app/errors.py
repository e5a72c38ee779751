"""Recorder error taxonomy.

Every error raised out of a lifecycle operation is a ``RecorderError``
whose message names the stage that failed (spawn, validation,
composite or persistence).
"""


class RecorderError(Exception):
    """Base class for all recording errors."""


class AlreadyRecordingError(RecorderError):
    def __init__(self, task_id=None) -> None:
        msg = "Recording already in progress"
        if task_id is not None:
            msg += f" (task {task_id})"
        super().__init__(msg)
        self.task_id = task_id


class NotRecordingError(RecorderError):
    def __init__(self, operation: str = "") -> None:
        msg = "No recording in progress"
        if operation:
            msg = f"Cannot {operation}: no recording in progress"
        super().__init__(msg)


class SpawnError(RecorderError):
    """An encoder subprocess could not be launched or died on startup."""

    def __init__(self, source_name: str, reason: str) -> None:
        super().__init__(f"spawn: failed to start recording {source_name}: {reason}")
        self.source_name = source_name
        self.reason = reason


class NoUsableArtifactsError(RecorderError):
    def __init__(self, prefix: str) -> None:
        super().__init__(
            f"validation: no valid video files were recorded for {prefix}"
        )
        self.prefix = prefix


class NoInputsError(RecorderError):
    def __init__(self) -> None:
        super().__init__("composite: no input files provided")


class CompositeError(RecorderError):
    """ffmpeg exited non-zero (or could not run) while combining clips.

    ``diagnostic`` holds ffmpeg's stderr verbatim.
    """

    def __init__(self, diagnostic: str, returncode=None) -> None:
        super().__init__(f"composite: ffmpeg failed (rc={returncode}): {diagnostic}")
        self.diagnostic = diagnostic
        self.returncode = returncode


class PersistenceError(RecorderError):
    def __init__(self, action: str, reason: str) -> None:
        super().__init__(f"persistence: could not {action}: {reason}")
        self.action = action
        self.reason = reason
