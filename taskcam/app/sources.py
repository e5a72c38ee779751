"""Capture source enumeration — displays via mss, cameras via ffmpeg.

Pure queries: nothing is cached, every call re-reads the system.
"""

import glob
import logging
import re
import subprocess
import sys
from typing import List, Optional

import mss

from .models import CaptureSourceDescriptor, SOURCE_DISPLAY, SOURCE_WEBCAM
from .utils import ffmpeg_exe as _ffmpeg_exe, subprocess_kwargs as _subprocess_kwargs

logger = logging.getLogger(__name__)

# [dshow @ 000001] "Integrated Camera" (video)
_DSHOW_VIDEO_RE = re.compile(r'"([^"]+)"\s*\(video\)')
# [AVFoundation indev @ 0x7f] [0] FaceTime HD Camera
_AVF_DEVICE_RE = re.compile(r"\[(\d+)\]\s+(.+)")


def parse_dshow_devices(output: str) -> List[CaptureSourceDescriptor]:
    """Parse ``ffmpeg -list_devices true -f dshow`` stderr."""
    cams: List[CaptureSourceDescriptor] = []
    for line in output.splitlines():
        m = _DSHOW_VIDEO_RE.search(line)
        if m:
            name = m.group(1)
            cams.append(CaptureSourceDescriptor(id=name, name=name, kind=SOURCE_WEBCAM))
    return cams


def parse_avfoundation_devices(output: str) -> List[CaptureSourceDescriptor]:
    """Parse ``ffmpeg -f avfoundation -list_devices true`` stderr.

    Only the video section is used, and screen-capture pseudo devices
    ("Capture screen N") are skipped since displays come from mss.
    """
    cams: List[CaptureSourceDescriptor] = []
    in_video = False
    for line in output.splitlines():
        if "video devices" in line.lower():
            in_video = True
            continue
        if "audio devices" in line.lower():
            break
        if not in_video:
            continue
        m = _AVF_DEVICE_RE.search(line)
        if m and not m.group(2).startswith("Capture screen"):
            cams.append(CaptureSourceDescriptor(
                id=m.group(1), name=m.group(2).strip(), kind=SOURCE_WEBCAM,
            ))
    return cams


class CaptureSourceCatalog:
    """Lists the displays and cameras that can be recorded right now."""

    def list_displays(self) -> List[CaptureSourceDescriptor]:
        """Return attached monitors, primary first when mss can tell."""
        displays: List[CaptureSourceDescriptor] = []
        with mss.mss() as sct:
            for i, m in enumerate(sct.monitors):
                if i == 0:  # "all monitors" virtual screen
                    continue
                displays.append(
                    CaptureSourceDescriptor(
                        id=str(i - 1) if sys.platform == "darwin" else str(i),
                        name=f"Display {i}  ({m['width']}×{m['height']})",
                        kind=SOURCE_DISPLAY,
                        width=m["width"],
                        height=m["height"],
                        is_primary=bool(m.get("is_primary", i == 1)),
                        left=m["left"],
                        top=m["top"],
                    )
                )
        displays.sort(key=lambda d: not d.is_primary)
        return displays

    def list_webcams(self) -> List[CaptureSourceDescriptor]:
        """Return available camera devices (possibly empty)."""
        if sys.platform.startswith("linux"):
            return [
                CaptureSourceDescriptor(id=dev, name=dev, kind=SOURCE_WEBCAM)
                for dev in sorted(glob.glob("/dev/video*"))
            ]
        if sys.platform == "win32":
            args = ["-list_devices", "true", "-f", "dshow", "-i", "dummy"]
            parser = parse_dshow_devices
        elif sys.platform == "darwin":
            args = ["-f", "avfoundation", "-list_devices", "true", "-i", ""]
            parser = parse_avfoundation_devices
        else:
            return []

        output = self._ffmpeg_device_listing(args)
        return parser(output) if output else []

    def first_webcam(self) -> Optional[CaptureSourceDescriptor]:
        """The camera a session records by default, or None."""
        try:
            cams = self.list_webcams()
        except Exception as exc:
            logger.warning("Webcam enumeration failed: %s", exc)
            return None
        return cams[0] if cams else None

    @staticmethod
    def _ffmpeg_device_listing(args: List[str]) -> str:
        # ffmpeg prints the device list on stderr and exits non-zero
        try:
            result = subprocess.run(
                [_ffmpeg_exe(), "-hide_banner"] + args,
                capture_output=True, timeout=15,
                **_subprocess_kwargs(),
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("ffmpeg device listing failed: %s", exc)
            return ""
        return result.stderr.decode(errors="replace")
