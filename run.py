import argparse
import sys
import time

import uvicorn

from face_gate.config import GateSettings
from face_gate.exceptions import CaptureError, FaceGateError
from face_gate.logger import setup_logger
from face_gate.modes import Facing, Mode
from face_gate.runtime import build_runtime


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Face and QR identification gate")
    subparsers = parser.add_subparsers(dest="command", required=True)

    enroll = subparsers.add_parser("enroll", help="Capture a face from the user camera and enroll it")
    enroll.add_argument("--identity", required=True, help="Identity label to store")
    enroll.add_argument("--attempts", type=int, default=60, help="Frames to try before giving up")

    scan = subparsers.add_parser("scan", help="Run a capture session and print results")
    scan.add_argument("--mode", choices=[m.value for m in Mode], default=None, help="Initial mode")
    scan.add_argument("--seconds", type=float, default=15.0, help="Session length in seconds")

    list_cmd = subparsers.add_parser("list-faces", help="List stored face rows")
    list_cmd.add_argument("--limit", type=int, default=100, help="Max rows to print")

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0", help="Host interface")
    serve.add_argument("--port", type=int, default=8000, help="Port")
    serve.add_argument("--autostart", action="store_true", help="Start a capture session on boot")

    return parser


def _enroll(runtime, identity: str, attempts: int) -> int:
    if not runtime.load_gallery():
        raise FaceGateError(runtime.scheduler.state.error or "Could not load enrollments.")
    stream = runtime.scheduler.camera.open(Facing.USER)
    try:
        for _ in range(max(1, attempts)):
            try:
                frame = stream.read()
            except CaptureError:
                continue
            embedding = runtime.extractor.extract(frame)
            if embedding is None:
                continue
            stored = runtime.store.enroll(identity, embedding)
            print(f"Enrolled {stored.identity} (row {stored.id}, {len(stored.descriptor)} values).")
            return 0
    finally:
        stream.stop()
    print("No face captured; nothing enrolled.")
    return 1


def _scan(runtime, mode, seconds: float) -> int:
    if not runtime.load_gallery():
        raise FaceGateError(runtime.scheduler.state.error or "Could not load enrollments.")
    runtime.scheduler.start(Mode(mode) if mode else None)
    deadline = time.monotonic() + max(0.0, seconds)
    while time.monotonic() < deadline:
        event = runtime.sink.get(timeout=0.25)
        if event is not None:
            print(event.to_dict())
        if runtime.scheduler.state.error:
            raise FaceGateError(runtime.scheduler.state.error)
    print("Scan stopped.")
    return 0


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = setup_logger("main")
    settings = GateSettings.from_env()

    try:
        if args.command == "serve":
            from face_gate.web_app import create_web_app

            app = create_web_app(build_runtime(settings), autostart=args.autostart)
            uvicorn.run(app, host=args.host, port=args.port, log_level="info")
            return 0

        if args.command == "list-faces":
            from face_gate.database import SqlEnrollmentRepository, create_db_engine

            settings.ensure_directories()
            repository = SqlEnrollmentRepository(create_db_engine(settings.resolved_database_url))
            repository.create_schema()
            faces = repository.list_faces()
            if not faces:
                print("No faces enrolled.")
                return 0

            print(f"{'Row':<8} {'Identity':<24} {'Dim'}")
            print("-" * 40)
            for face in faces[: args.limit]:
                print(f"{face.id:<8} {str(face.identity):<24} {len(face.descriptor)}")
            return 0

        runtime = build_runtime(settings)
        try:
            if args.command == "enroll":
                return _enroll(runtime, args.identity, args.attempts)
            if args.command == "scan":
                return _scan(runtime, args.mode, args.seconds)
        finally:
            runtime.close()

    except FaceGateError as exc:
        logger.error("Application error: %s", exc)
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
