"""
One-shot command-line client for the aish daemon.

Sends a single query or command, streams the reply to the terminal and
exits when the daemon sends ``done``. The daemon is started on demand.
"""

from typing import Optional
import argparse
import asyncio
import os
import select
import subprocess
import sys
import time

from pydantic import BaseModel

from aish.application.daemon.daemon_server import STREAM_LIMIT
from aish.application.daemon.schema.events import (
    CommandRequest,
    DoneEvent,
    ErrorEvent,
    InfoEvent,
    QueryRequest,
    StatusEvent,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
    encode_frame,
    parse_event,
)
from aish.domain.exceptions import AishError, ProtocolError
from aish.infrastructure.config.settings import Settings
from aish.infrastructure.process import pid_file

STARTUP_WAIT_SECONDS = 3.0
STARTUP_POLL_SECONDS = 0.1
STDIN_WAIT_SECONDS = 0.5


SIMPLE_COMMANDS = ("status", "compact", "clear", "forget", "stop")
ARG_COMMANDS = ("topic", "recall", "remember")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="aish", description="Ask the AI from your shell")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--status", action="store_true", help="show context usage")
    group.add_argument("--compact", action="store_true", help="fold the window into a topic")
    group.add_argument("--clear", action="store_true", help="clear the window, keep memory")
    group.add_argument("--forget", action="store_true", help="clear all context")
    group.add_argument("--start", action="store_true", help="start the daemon")
    group.add_argument("--stop", action="store_true", help="stop the daemon")
    group.add_argument("--topic", nargs="+", metavar="NAME", help="switch to a new topic")
    group.add_argument("--recall", nargs="+", metavar="NAME", help="recall a saved topic")
    group.add_argument("--remember", nargs="+", metavar="FACT", help="store a fact in memory")
    parser.add_argument("message", nargs="*", help="message for the AI")
    return parser


def build_request(args: argparse.Namespace, stdin_text: str = "", cwd: Optional[str] = None) -> Optional[BaseModel]:
    """Translate parsed arguments into a protocol request"""

    for name in SIMPLE_COMMANDS:
        if getattr(args, name):
            return CommandRequest(command=name)

    for name in ARG_COMMANDS:
        value = getattr(args, name)
        if value:
            return CommandRequest(command=name, args=" ".join(value))

    message = " ".join(args.message).strip()
    if not message:
        return None
    if stdin_text:
        message = f"{stdin_text}\n\n{message}"
    return QueryRequest(message=message, cwd=cwd or os.getcwd())


def read_piped_stdin() -> str:
    if sys.stdin is None or sys.stdin.isatty():
        return ""
    try:
        ready, _, _ = select.select([sys.stdin], [], [], STDIN_WAIT_SECONDS)
    except (OSError, ValueError):
        return ""
    if not ready:
        return ""
    return sys.stdin.read().strip()


def is_daemon_running(settings: Settings) -> bool:
    """True when a daemon socket is usable; cleans up a stale socket/PID pair"""

    socket_path = settings.socket_path
    if not socket_path.exists():
        return False

    pid = pid_file.read_pid(settings.pid_path)
    if pid is None:
        # No readable PID file, trust the socket
        return True
    if pid_file.is_process_alive(pid):
        return True

    pid_file.remove_quietly(socket_path)
    pid_file.remove_quietly(settings.pid_path)
    return False


def start_daemon(settings: Settings):
    env = dict(os.environ)
    env.pop("CLAUDECODE", None)

    subprocess.Popen(
        [sys.executable, "-m", "aish"],
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        env=env,
    )

    deadline = time.monotonic() + STARTUP_WAIT_SECONDS
    while time.monotonic() < deadline:
        if settings.socket_path.exists():
            return
        time.sleep(STARTUP_POLL_SECONDS)
    raise AishError(f"Daemon failed to start within {STARTUP_WAIT_SECONDS:g}s")


def ensure_daemon(settings: Settings):
    if not is_daemon_running(settings):
        _dim("Starting daemon...")
        start_daemon(settings)
        _dim("Daemon ready.")


async def send_and_receive(settings: Settings, request: BaseModel):
    """Send one request and render frames until ``done``"""

    try:
        reader, writer = await asyncio.open_unix_connection(str(settings.socket_path), limit=STREAM_LIMIT)
    except (FileNotFoundError, ConnectionRefusedError) as e:
        raise AishError("Daemon not running") from e

    try:
        writer.write(encode_frame(request))
        await writer.drain()

        while True:
            line = await reader.readline()
            if not line:
                raise AishError("Daemon closed the connection")
            if not line.strip():
                continue
            try:
                event = parse_event(line)
            except ProtocolError:
                continue
            render_event(event)
            if isinstance(event, DoneEvent):
                return
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except ConnectionError:
            pass


def render_event(event):
    if isinstance(event, TextEvent):
        sys.stdout.write(event.content)
        sys.stdout.flush()
    elif isinstance(event, ToolUseEvent):
        _dim(f"  [{event.tool}] {event.input[:100]}")
    elif isinstance(event, ToolResultEvent):
        _dim("  -> done")
    elif isinstance(event, StatusEvent):
        print_status(event.data)
    elif isinstance(event, InfoEvent):
        sys.stderr.write(f"ok: {event.message}\n")
    elif isinstance(event, ErrorEvent):
        sys.stderr.write(f"error: {event.message}\n")
    elif isinstance(event, DoneEvent):
        sys.stdout.write("\n")
        sys.stdout.flush()


def print_status(data: dict):
    session = data.get("session_id") or "none"
    print("-- aish status --")
    print(
        f"Memory: {data.get('memory_tokens', 0)}t | "
        f"Topics: {data.get('topic_count', 0)} ({data.get('topic_tokens', 0)}t) | "
        f"Window: {data.get('window_turns', 0)} turns ({data.get('window_tokens', 0)}t)"
    )
    print(
        f"Budget: {data.get('total_tokens', 0)} / {data.get('budget', 0)} tokens | "
        f"Session: {session[:8]}"
    )


def _dim(text: str):
    sys.stderr.write(f"{text}\n")


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = Settings.from_env()

    try:
        if args.start:
            if is_daemon_running(settings):
                _dim("Daemon already running.")
            else:
                ensure_daemon(settings)
            return 0

        if args.stop and not is_daemon_running(settings):
            _dim("Daemon not running.")
            return 0

        stdin_text = read_piped_stdin() if args.message else ""
        request = build_request(args, stdin_text=stdin_text)
        if request is None:
            parser.print_help()
            return 0

        ensure_daemon(settings)
        asyncio.run(send_and_receive(settings, request))

    except AishError as e:
        sys.stderr.write(f"error: {e}\n")
        return 1
    except KeyboardInterrupt:
        return 130

    return 0


if __name__ == "__main__":
    sys.exit(main())
