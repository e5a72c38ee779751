"""Shared utilities used by multiple modules."""

import logging
import os
import subprocess
import sys
from typing import Dict, List, Optional, Tuple

from .models import CaptureSourceDescriptor

logger = logging.getLogger(__name__)


def ffmpeg_exe() -> str:
    """Return path to the ffmpeg binary bundled via imageio-ffmpeg."""
    import imageio_ffmpeg
    return imageio_ffmpeg.get_ffmpeg_exe()


def subprocess_kwargs() -> dict:
    """Extra kwargs to hide the console window on Windows."""
    kw: dict = {}
    if sys.platform == "win32":
        si = subprocess.STARTUPINFO()
        si.dwFlags |= subprocess.STARTF_USESHOWWINDOW
        kw["startupinfo"] = si
        kw["creationflags"] = subprocess.CREATE_NO_WINDOW
    return kw


def fmt_time(seconds: float) -> str:
    """Format seconds as m:ss."""
    s = int(seconds)
    m = s // 60
    return f"{m}:{s % 60:02d}"


def stderr_tail(data, limit: int = 800) -> str:
    """Decode captured ffmpeg stderr and keep the last *limit* chars."""
    if not data:
        return ""
    if isinstance(data, bytes):
        data = data.decode(errors="replace")
    return data.strip()[-limit:]


# ── Composite encoder profiles ──────────────────────────────────────

# Encoder ID → (display name, ffmpeg codec name, quality args)
# Quality args approximate CRF 18 equivalent for each encoder.
ENCODER_PROFILES: Dict[str, Tuple[str, str, List[str]]] = {
    "h264_nvenc":  ("NVIDIA NVENC",   "h264_nvenc",  ["-preset", "p4", "-cq", "18", "-b:v", "0"]),
    "h264_qsv":    ("Intel QuickSync", "h264_qsv",   ["-preset", "medium", "-global_quality", "18"]),
    "h264_amf":    ("AMD AMF",         "h264_amf",    ["-quality", "quality", "-qp_i", "18", "-qp_p", "18"]),
    "libx264":     ("Software (x264)", "libx264",     ["-preset", "medium", "-crf", "18"]),
}


def encoder_display_name(enc_id: str) -> str:
    """Human-readable name for an encoder ID."""
    profile = ENCODER_PROFILES.get(enc_id)
    return profile[0] if profile else enc_id


def build_encoder_args(enc_id: str) -> List[str]:
    """Return ffmpeg arguments for the given encoder ID.

    Returns ``["-c:v", "<codec>", ...quality_args..., "-pix_fmt", "yuv420p"]``.
    """
    profile = ENCODER_PROFILES.get(enc_id)
    if profile is None:
        profile = ENCODER_PROFILES["libx264"]
    _, codec, quality_args = profile
    args = ["-c:v", codec] + quality_args + ["-pix_fmt", "yuv420p"]
    return args


# ── Live capture arguments ──────────────────────────────────────────

# Capture must not slow down the user's foreground work, so the live
# encoders trade file size for CPU: ultrafast x264, no B-frames.
CAPTURE_ENCODER_ARGS: List[str] = [
    "-c:v", "libx264",
    "-preset", "ultrafast",
    "-tune", "zerolatency",
    "-pix_fmt", "yuv420p",
]


def build_display_input_args(
    source: CaptureSourceDescriptor, fps: int, platform: Optional[str] = None,
) -> List[str]:
    """ffmpeg input args that grab one display's desktop region."""
    platform = platform or sys.platform
    size = (
        ["-video_size", f"{source.width}x{source.height}"]
        if source.width and source.height else []
    )
    if platform == "win32":
        return [
            "-f", "gdigrab",
            "-framerate", str(fps),
            "-draw_mouse", "1",
            "-offset_x", str(source.left),
            "-offset_y", str(source.top),
        ] + size + ["-i", "desktop"]
    if platform == "darwin":
        return [
            "-f", "avfoundation",
            "-framerate", str(fps),
            "-capture_cursor", "1",
            "-i", f"Capture screen {source.id}:none",
        ]
    display = os.environ.get("DISPLAY", ":0")
    return [
        "-f", "x11grab",
        "-framerate", str(fps),
    ] + size + ["-i", f"{display}+{source.left},{source.top}"]


def build_webcam_input_args(
    source: CaptureSourceDescriptor, fps: int, video_size: str = "640x480",
    platform: Optional[str] = None,
) -> List[str]:
    """ffmpeg input args for a camera device."""
    platform = platform or sys.platform
    if platform == "win32":
        return [
            "-f", "dshow",
            "-video_size", video_size,
            "-framerate", str(fps),
            "-i", f"video={source.name}",
        ]
    if platform == "darwin":
        return [
            "-f", "avfoundation",
            "-video_size", video_size,
            "-framerate", str(fps),
            "-i", f"{source.id}:none",
        ]
    return [
        "-f", "v4l2",
        "-video_size", video_size,
        "-framerate", str(fps),
        "-i", source.id,
    ]


def build_capture_command(ffmpeg: str, input_args: List[str], out_path: str) -> List[str]:
    """Full ffmpeg command line for one live capture encoder."""
    return [
        ffmpeg,
        "-y",                        # overwrite
        "-hide_banner",
        "-loglevel", "error",        # keep the stderr pipe small
        "-nostats",
    ] + input_args + CAPTURE_ENCODER_ARGS + [out_path]
