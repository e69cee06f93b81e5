"""Command line entry point of the datastore server."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
import traceback
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Sequence

import zmq

from reportdb.config import load_config
from reportdb.database import ReportDB
from reportdb.logsetup import init_logger
from reportdb.server import DatastoreServer
from reportdb.shutdown import install_shutdown_handler

logger = logging.getLogger("reportdb.cli")


class _DebugHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        path = self.path.rstrip("/")
        if path in ("", "/debug"):
            body = f"pid {os.getpid()}\n"
        elif path == "/debug/threads":
            frames = sys._current_frames()
            parts = []
            for thread in threading.enumerate():
                frame = frames.get(thread.ident) if thread.ident is not None else None
                stack = "".join(traceback.format_stack(frame)) if frame is not None else ""
                parts.append(f"thread {thread.name} ({thread.ident}):\n{stack}")
            body = "\n".join(parts)
        else:
            self.send_error(404)
            return
        data = body.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        logger.debug("debug server: " + format, *args)


def _start_profiling(port: str) -> ThreadingHTTPServer | None:
    logger.debug("process id: %d", os.getpid())
    try:
        server = ThreadingHTTPServer(("localhost", int(port)), _DebugHandler)
    except (OSError, ValueError) as error:
        logger.error("error starting profiling server: %s", error)
        return None
    threading.Thread(target=server.serve_forever, name="profiling", daemon=True).start()
    return server


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reportdb", description="Run the datastore server.")
    parser.add_argument(
        "--directory",
        default=None,
        help="base directory holding config/ and data/ (default: current directory)",
    )
    parser.add_argument("--log-dir", default="logs", help="directory for log files")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the datastore until SIGINT or SIGTERM; return the exit status."""
    args = _parser().parse_args(argv)

    try:
        settings = load_config(args.directory)
    except (OSError, ValueError) as error:
        print(f"error loading config: {error}", file=sys.stderr)
        return 1
    try:
        init_logger(settings, args.log_dir)
    except OSError as error:
        print(f"error initializing logger: {error}", file=sys.stderr)
        return 1

    signals = (signal.SIGINT, signal.SIGTERM)
    previous = {sig: signal.getsignal(sig) for sig in signals}
    profiler = None
    try:
        shutdown = install_shutdown_handler()
        if not settings.is_production:
            profiler = _start_profiling(settings.profiling_port)

        db = ReportDB(settings)
        server = DatastoreServer(settings, db)
        try:
            server.start()
        except zmq.ZMQError as error:
            logger.error("error starting server: %s", error)
            db.close()
            return 1

        while not shutdown.wait(0.5):
            pass
        logger.info("shutting down")
        server.stop()
        db.close()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        if profiler is not None:
            profiler.shutdown()
            profiler.server_close()
    return 0


if __name__ == "__main__":
    sys.exit(main())