"""Post-stop artifact scanning.

After a session's encoders have exited, the validator looks for the
files they were supposed to write and keeps the ones worth compositing.
A zero-byte file means that source failed to record; it is skipped
rather than failing the whole session.
"""

import logging
import os
from typing import List, Optional

import cv2

from .models import MediaArtifact, SOURCE_DISPLAY, SOURCE_WEBCAM

logger = logging.getLogger(__name__)

VIDEO_EXT = "mp4"


def display_path(prefix: str, index: int) -> str:
    return f"{prefix}_display_{index}.{VIDEO_EXT}"


def webcam_path(prefix: str) -> str:
    return f"{prefix}_webcam.{VIDEO_EXT}"


def combined_path(prefix: str) -> str:
    return f"{prefix}_combined.{VIDEO_EXT}"


class ArtifactValidator:
    """Finds the usable per-source recordings for a session prefix."""

    def scan(self, prefix: str) -> List[MediaArtifact]:
        """Return usable artifacts, displays in index order then webcam.

        Display indices are probed from 0 and probing ends at the first
        missing file, so ``display_2`` is never looked at when
        ``display_1`` does not exist.
        """
        usable: List[MediaArtifact] = []

        idx = 0
        while True:
            path = display_path(prefix, idx)
            if not os.path.exists(path):
                break
            artifact = self._inspect(path, SOURCE_DISPLAY, idx)
            if artifact is not None:
                usable.append(artifact)
            idx += 1

        cam = webcam_path(prefix)
        if os.path.exists(cam):
            artifact = self._inspect(cam, SOURCE_WEBCAM, None)
            if artifact is not None:
                usable.append(artifact)

        logger.info("Found %d valid video files to combine", len(usable))
        for i, a in enumerate(usable):
            logger.info("  [%d] %s (%d bytes)", i, a.path, a.byte_size)
        return usable

    @staticmethod
    def _inspect(path: str, kind: str, index: Optional[int]) -> Optional[MediaArtifact]:
        try:
            size = os.path.getsize(path)
        except OSError as exc:
            logger.warning("Cannot stat %s: %s", path, exc)
            return None
        artifact = MediaArtifact(path=path, byte_size=size, kind=kind, index=index)
        if not artifact.is_usable:
            logger.warning("%s file %s is empty, skipping", kind.capitalize(), path)
            return None
        return artifact

    @staticmethod
    def cleanup(artifacts: List[MediaArtifact]) -> int:
        """Delete per-source files; returns how many were removed."""
        removed = 0
        for a in artifacts:
            try:
                os.remove(a.path)
                removed += 1
            except FileNotFoundError:
                pass
            except OSError as exc:
                logger.warning("Could not delete temporary file %s: %s", a.path, exc)
        logger.info("Cleaned up %d temporary files", removed)
        return removed


def probe_duration_seconds(path: str) -> Optional[float]:
    """Duration of a video from its container metadata, or None."""
    cap = cv2.VideoCapture(path)
    try:
        if not cap.isOpened():
            return None
        fps = cap.get(cv2.CAP_PROP_FPS)
        frames = cap.get(cv2.CAP_PROP_FRAME_COUNT)
        if fps <= 0 or frames <= 0:
            return None
        return frames / fps
    finally:
        cap.release()
