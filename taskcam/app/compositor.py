"""Grid compositor — tiles several recordings into one H.264 MP4.

All inputs go through a single ffmpeg pass (one ``-filter_complex``
graph) so no clip is re-encoded more than once.  This runs after the
capture has finished, so the encode favours quality over speed.
"""

import logging
import os
import subprocess
from typing import List, Optional, Sequence

from .errors import CompositeError, NoInputsError
from .filter_graph import FilterGraph, build_grid_graph
from .models import CANVAS_WIDTH, CANVAS_HEIGHT
from .utils import (
    ffmpeg_exe as _ffmpeg_exe,
    subprocess_kwargs as _subprocess_kwargs,
    build_encoder_args as _build_encoder_args,
    encoder_display_name,
    stderr_tail,
)

logger = logging.getLogger(__name__)


class GridCompositor:
    """Combines N clips into one grid-laid-out video."""

    def __init__(
        self,
        canvas_width: int = CANVAS_WIDTH,
        canvas_height: int = CANVAS_HEIGHT,
        encoder_id: str = "libx264",
        timeout_s: Optional[float] = None,
    ) -> None:
        self.canvas_width = canvas_width
        self.canvas_height = canvas_height
        self.encoder_id = encoder_id
        self.timeout_s = timeout_s

    # ── public API ──────────────────────────────────────────────────

    def build_graph(self, n: int) -> FilterGraph:
        return build_grid_graph(n, self.canvas_width, self.canvas_height)

    def build_command(
        self, files: Sequence[str], output: str, encoder_id: Optional[str] = None,
    ) -> List[str]:
        graph = self.build_graph(len(files))
        cmd = [_ffmpeg_exe(), "-y", "-hide_banner"]
        for path in files:
            cmd += ["-i", path]
        cmd += [
            "-filter_complex", graph.render(),
            "-map", f"[{graph.output_label}]",
        ]
        cmd += _build_encoder_args(encoder_id or self.encoder_id)
        cmd += ["-movflags", "+faststart", output]
        return cmd

    def combine(self, files: Sequence[str], output: str) -> None:
        """Write the grid composite of *files* to *output*.

        Raises ``NoInputsError`` for an empty list and ``CompositeError``
        (with ffmpeg's stderr) if encoding fails.  On failure no output
        file is left behind.
        """
        files = list(files)
        if not files:
            raise NoInputsError()

        graph = self.build_graph(len(files))
        if graph.layout is not None:
            logger.info(
                "Combining %d videos into %dx%d grid → %s",
                len(files), graph.layout.rows, graph.layout.cols, output,
            )
        else:
            logger.info("Rescaling single video to %dx%d → %s",
                        self.canvas_width, self.canvas_height, output)

        try:
            self._run(files, output, self.encoder_id)
        except CompositeError as exc:
            if self.encoder_id == "libx264":
                raise
            logger.warning(
                "Encoder %s failed (rc=%s), retrying with %s",
                self.encoder_id, exc.returncode, encoder_display_name("libx264"),
            )
            self._run(files, output, "libx264")

        logger.info("Videos combined successfully: %s", output)

    # ── internal ────────────────────────────────────────────────────

    def _run(self, files: List[str], output: str, encoder_id: str) -> None:
        cmd = self.build_command(files, output, encoder_id)
        logger.info("Launching ffmpeg with encoder %s: %s", encoder_id, " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=self.timeout_s,
                **_subprocess_kwargs(),
            )
        except subprocess.TimeoutExpired as exc:
            self._discard(output)
            raise CompositeError(
                f"timed out after {self.timeout_s}s\n{stderr_tail(exc.stderr)}"
            ) from exc
        except OSError as exc:
            self._discard(output)
            raise CompositeError(f"could not run ffmpeg: {exc}") from exc

        if result.returncode != 0:
            stderr_text = result.stderr.decode(errors="replace") if result.stderr else ""
            logger.error(
                "Combine failed (encoder=%s, rc=%s): %s",
                encoder_id, result.returncode, stderr_tail(stderr_text),
            )
            self._discard(output)
            raise CompositeError(stderr_text, result.returncode)

    @staticmethod
    def _discard(output: str) -> None:
        """Remove a partial output file."""
        if os.path.isfile(output):
            try:
                os.remove(output)
            except OSError as exc:
                logger.warning("Could not remove partial output %s: %s", output, exc)
