"""Command line front end for the recorder."""

import argparse
import json
import logging
import os
import sys
import threading
from typing import List, Optional

from .compositor import GridCompositor
from .errors import RecorderError
from .lifecycle import RecordingLifecycle
from .record_store import JsonRecordStore
from .settings import load_settings
from .sources import CaptureSourceCatalog
from .utils import fmt_time
from .version import __version__

logger = logging.getLogger(__name__)

RECORDS_FILE = "recordings.json"


def _cmd_sources(args: argparse.Namespace) -> int:
    catalog = CaptureSourceCatalog()
    displays = catalog.list_displays()
    cams = catalog.list_webcams()
    if args.json:
        print(json.dumps([s.to_dict() for s in list(displays) + list(cams)], indent=2))
        return 0
    print("Displays:")
    for d in displays:
        primary = "  (primary)" if d.is_primary else ""
        print(f"  [{d.id}] {d.name} at {d.left},{d.top}{primary}")
    print("Webcams:")
    if not cams:
        print("  none")
    for c in cams:
        print(f"  [{c.id}] {c.name}")
    return 0


def _cmd_record(args: argparse.Namespace) -> int:
    settings = load_settings()
    if args.output_dir:
        settings.output_dir = args.output_dir
    if args.no_webcam:
        settings.webcam_enabled = False
    if args.fps:
        settings.capture_fps = args.fps

    store = JsonRecordStore(os.path.join(settings.output_dir, RECORDS_FILE))
    lifecycle = RecordingLifecycle(settings=settings, record_store=store)

    prefix = lifecycle.start(args.task_id)
    print(f"Recording task {args.task_id} → {prefix}_*")

    done = threading.Event()
    if args.duration:
        print(f"Stopping automatically after {fmt_time(args.duration)}")
    else:
        print("Press Enter to stop")
        threading.Thread(target=lambda: (sys.stdin.readline(), done.set()), daemon=True).start()

    elapsed = 0
    try:
        while not done.wait(1.0):
            elapsed += 1
            lifecycle.update_duration(elapsed)
            if args.duration and elapsed >= args.duration:
                break
    except KeyboardInterrupt:
        print()

    print("Stopping and combining, this can take a while...")
    final_path = lifecycle.stop()
    if lifecycle.last_composite_error is not None:
        print("Combining failed; saved the first source only. Source clips kept.")
    print(final_path)
    return 0


def _cmd_combine(args: argparse.Namespace) -> int:
    settings = load_settings()
    compositor = GridCompositor(
        canvas_width=settings.canvas_width,
        canvas_height=settings.canvas_height,
        encoder_id=args.encoder or settings.composite_encoder,
    )
    compositor.combine(args.files, args.output)
    print(args.output)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="taskcam",
        description="Record all displays (and a webcam) and combine them into one grid video.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sources", help="list capturable displays and webcams")
    p.add_argument("--json", action="store_true", help="print the sources as JSON")
    p.set_defaults(func=_cmd_sources)

    p = sub.add_parser("record", help="record a task until Enter / --duration")
    p.add_argument("task_id", type=int)
    p.add_argument("--duration", type=int, default=0, help="seconds to record")
    p.add_argument("--no-webcam", action="store_true")
    p.add_argument("--fps", type=int, default=0)
    p.add_argument("--output-dir", default="")
    p.set_defaults(func=_cmd_record)

    p = sub.add_parser("combine", help="tile existing videos into one grid video")
    p.add_argument("output")
    p.add_argument("files", nargs="+")
    p.add_argument("--encoder", default="", help="e.g. libx264, h264_nvenc")
    p.set_defaults(func=_cmd_combine)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(name)s | %(levelname)s | %(message)s")
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    try:
        return args.func(args)
    except RecorderError as exc:
        logger.error("%s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1
