"""FocusLens — screen recorder with cursor-following autoframing export."""

import argparse
import json
import logging
import sys
import time

from PySide6.QtCore import QCoreApplication, QtMsgType, qInstallMessageHandler

from studio.config import StudioConfig
from studio.errors import StudioError
from studio.models import CAPTURE_MODES, RESOLUTIONS, ExportProfile, RecordingProfile
from studio.project_file import (
    evaluate_project_motion,
    list_projects,
    scan_recoverable_projects,
    validate_quality_gate,
)
from studio.recording import RecordingController
from studio.runtime import RuntimeContext
from studio.utils import fmt_time
from studio.version import __version__
from studio.video_exporter import ExportController

logging.basicConfig(
    level=logging.INFO,
    format="%(name)s | %(levelname)s | %(message)s",
)

_logger = logging.getLogger(__name__)


def _global_exception_handler(exc_type, exc_value, exc_tb):
    """Log unhandled exceptions instead of crashing silently."""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return
    _logger.critical("Unhandled exception", exc_info=(exc_type, exc_value, exc_tb))


def _message_handler(msg_type, context, message):
    """Route Qt's own diagnostics through logging."""
    if msg_type == QtMsgType.QtDebugMsg:
        return
    if msg_type in (QtMsgType.QtCriticalMsg, QtMsgType.QtFatalMsg):
        _logger.error("Qt: %s", message)
    else:
        _logger.warning("Qt: %s", message)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


# ── Commands ────────────────────────────────────────────────────────

def _cmd_record(app: QCoreApplication, config: StudioConfig, args) -> int:
    controller = RecordingController(config, RuntimeContext())
    controller.status.connect(
        lambda ev: _logger.info("[%s %s] %s: %s", ev.status, fmt_time(ev.duration_ms), ev.source_label, ev.detail)
    )
    profile = RecordingProfile(
        capture_mode=args.mode,
        window_target=args.window,
        frame_rate=args.fps,
        resolution=args.resolution,
        microphone_device_id=args.mic,
        system_audio_enabled=not args.no_system_audio,
    )
    session_id = controller.start_recording(profile, project_id=args.project)
    deadline = time.monotonic() + args.duration if args.duration > 0 else None
    print(f"Recording session {session_id}, press Ctrl+C to stop")
    try:
        while deadline is None or time.monotonic() < deadline:
            app.processEvents()
            time.sleep(0.1)
    except KeyboardInterrupt:
        pass
    project_id = controller.stop_recording(session_id)
    app.processEvents()
    print(f"Project ready to edit: {project_id}")
    return 0


def _cmd_export(app: QCoreApplication, config: StudioConfig, args) -> int:
    controller = ExportController(config, RuntimeContext())
    controller.progress.connect(
        lambda ev: _logger.info("[%3d%%] %s: %s", ev.progress, ev.status, ev.detail)
    )
    profile = ExportProfile(resolution=args.resolution, bitrate_mbps=args.bitrate, fps=args.fps)
    task_id = controller.start_export(args.project, profile)
    controller.wait(task_id)
    app.processEvents()

    snapshot = controller.get_export_task_status(task_id)
    _print_json(snapshot)
    if snapshot["status"] != "success":
        return 1
    gate = validate_quality_gate(config.project_root, args.project)
    _print_json(gate.to_dict())
    return 0


def _cmd_evaluate(app: QCoreApplication, config: StudioConfig, args) -> int:
    _print_json(evaluate_project_motion(config.project_root, args.project))
    return 0


def _cmd_list(app: QCoreApplication, config: StudioConfig, args) -> int:
    _print_json(list_projects(config.project_root))
    return 0


def _cmd_recover(app: QCoreApplication, config: StudioConfig, args) -> int:
    _print_json(scan_recoverable_projects(config.project_root))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="focuslens", description=__doc__)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--project-root", help="override FOCUSLENS_PROJECT_ROOT")
    sub = parser.add_subparsers(dest="command", required=True)

    rec = sub.add_parser("record", help="record the screen into a new project")
    rec.add_argument("--duration", type=float, default=0.0,
                     help="seconds to record (default: until Ctrl+C)")
    rec.add_argument("--mode", choices=CAPTURE_MODES, default="fullscreen")
    rec.add_argument("--window", help="window title for --mode window")
    rec.add_argument("--fps", type=int, default=30)
    rec.add_argument("--resolution", choices=RESOLUTIONS, default="1080p")
    rec.add_argument("--mic", help="microphone device name")
    rec.add_argument("--no-system-audio", action="store_true")
    rec.add_argument("--project", help="record into an existing project id")
    rec.set_defaults(func=_cmd_record)

    exp = sub.add_parser("export", help="export a project and check its quality gate")
    exp.add_argument("project")
    exp.add_argument("--resolution", choices=RESOLUTIONS, default="1080p")
    exp.add_argument("--bitrate", type=int, default=8, help="video bitrate in Mbps")
    exp.add_argument("--fps", type=int, default=30)
    exp.set_defaults(func=_cmd_export)

    ev = sub.add_parser("evaluate", help="camera-motion metrics for a stored cursor track")
    ev.add_argument("project")
    ev.set_defaults(func=_cmd_evaluate)

    sub.add_parser("list", help="list projects").set_defaults(func=_cmd_list)
    sub.add_parser("recover", help="list unfinished recordings").set_defaults(func=_cmd_recover)
    return parser


def main() -> None:
    """Application entry point — parses the command and runs it under a QCoreApplication."""
    sys.excepthook = _global_exception_handler

    qInstallMessageHandler(_message_handler)

    args = build_parser().parse_args()
    app = QCoreApplication(sys.argv[:1])
    app.setApplicationName("FocusLens")
    app.setApplicationVersion(__version__)

    config = StudioConfig.from_env()
    if args.project_root:
        config.project_root = args.project_root

    try:
        code = args.func(app, config, args)
    except StudioError as exc:
        _logger.error("%s: %s", exc.code, exc.message)
        if exc.suggestion:
            _logger.error("Suggestion: %s", exc.suggestion)
        code = 2
    sys.exit(code)


if __name__ == "__main__":
    main()
