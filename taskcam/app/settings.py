"""Recorder settings persisted through ``QSettings``.

The keys mirror the dataclass fields in camelCase, e.g. ``captureFps``.
"""

import logging
import os
from dataclasses import dataclass, fields
from typing import Optional

from PySide6.QtCore import QSettings

from .models import CANVAS_WIDTH, CANVAS_HEIGHT, DEFAULT_CAPTURE_FPS

logger = logging.getLogger(__name__)

ORG_NAME = "TaskCam"
APP_NAME = "TaskCam"


def default_output_dir() -> str:
    return os.path.join(os.path.expanduser("~"), "Videos", "TaskCam")


@dataclass
class RecorderSettings:
    output_dir: str = ""
    capture_fps: int = DEFAULT_CAPTURE_FPS
    webcam_enabled: bool = True
    webcam_size: str = "640x480"
    settle_interval_s: float = 5.0    # wait after encoder exit before scanning files
    stop_timeout_s: Optional[float] = 30.0  # None = wait forever for an encoder
    spawn_check_s: float = 0.05       # how long a fresh encoder must survive
    canvas_width: int = CANVAS_WIDTH
    canvas_height: int = CANVAS_HEIGHT
    composite_encoder: str = "libx264"

    def __post_init__(self) -> None:
        if not self.output_dir:
            self.output_dir = default_output_dir()


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.capitalize() for p in rest)


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _coerce(raw, default, name: str):
    """Convert a raw QSettings value (often a string) to *default*'s type."""
    if raw is None or raw == "":
        return default
    try:
        if name == "stop_timeout_s":
            if isinstance(raw, str) and raw.lower() in ("none", "0"):
                return None
            return float(raw) if float(raw) > 0 else None
        if isinstance(default, bool):
            return _to_bool(raw)
        if isinstance(default, int):
            return int(float(raw))
        if isinstance(default, float):
            return float(raw)
        return str(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid setting %s=%r", _camel(name), raw)
        return default


def _default_qsettings() -> QSettings:
    return QSettings(ORG_NAME, APP_NAME)


def load_settings(qsettings: Optional[QSettings] = None) -> RecorderSettings:
    """Read settings, falling back to defaults for missing/invalid keys."""
    qs = qsettings if qsettings is not None else _default_qsettings()
    defaults = RecorderSettings()
    values = {}
    for f in fields(RecorderSettings):
        default = getattr(defaults, f.name)
        values[f.name] = _coerce(qs.value(_camel(f.name)), default, f.name)
    return RecorderSettings(**values)


def save_settings(settings: RecorderSettings, qsettings: Optional[QSettings] = None) -> None:
    qs = qsettings if qsettings is not None else _default_qsettings()
    for f in fields(RecorderSettings):
        value = getattr(settings, f.name)
        if value is None:
            value = "none"
        qs.setValue(_camel(f.name), value)
    qs.sync()
