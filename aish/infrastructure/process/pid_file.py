"""Single-instance guard: PID file plus stale socket cleanup."""

from typing import Optional
from pathlib import Path
import os
import structlog

from aish.domain.exceptions import DaemonAlreadyRunningError

logger = structlog.get_logger(__name__)


def is_process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    return True


def read_pid(pid_path: Path) -> Optional[int]:
    try:
        return int(pid_path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


def live_daemon_pid(socket_path: Path, pid_path: Path) -> Optional[int]:
    """PID of a running daemon, or None when none is running"""
    if not socket_path.exists():
        return None
    pid = read_pid(pid_path)
    if pid is not None and is_process_alive(pid):
        return pid
    return None


def remove_quietly(path: Path):
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove file", path=str(path), error=str(e))


def acquire(socket_path: Path, pid_path: Path):
    """Claim the daemon slot or raise DaemonAlreadyRunningError.

    A socket left behind by a dead daemon is unlinked; failing to unlink it
    propagates as OSError.
    """
    pid = live_daemon_pid(socket_path, pid_path)
    if pid is not None:
        raise DaemonAlreadyRunningError(pid)

    if socket_path.exists():
        logger.info("Removing stale socket", path=str(socket_path))
        socket_path.unlink()

    pid_path.parent.mkdir(parents=True, exist_ok=True)
    pid_path.write_text(str(os.getpid()), encoding="utf-8")


def release(socket_path: Path, pid_path: Path):
    remove_quietly(socket_path)
    if read_pid(pid_path) == os.getpid():
        remove_quietly(pid_path)
