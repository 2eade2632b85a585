"""PID file management for the scheduler daemon."""

import os
import signal
from pathlib import Path
from typing import Optional


class DaemonAlreadyRunningError(RuntimeError):
    """Raised when acquiring a PID file that belongs to a live process."""

    def __init__(self, pid: int, path: Path) -> None:
        super().__init__(f"Daemon already running (PID: {pid}, file: {path})")
        self.pid = pid
        self.path = path


class PIDFile:
    """Tracks the running daemon through a file holding its process id.

    Only one daemon may own a PID file; `run status` and `run stop` read it.

    Example:
        with PIDFile(config.pid_file):
            await run_daemon(config)
    """

    def __init__(self, path: Path):
        self.path = path

    def create(self) -> None:
        """Write the current process id, creating parent directories."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()))

    def remove(self) -> None:
        """Remove the file if it exists."""
        self.path.unlink(missing_ok=True)

    def read(self) -> Optional[int]:
        """Read the stored process id.

        Returns:
            The PID, or None if the file is missing or unreadable
        """
        try:
            return int(self.path.read_text().strip())
        except (ValueError, OSError):
            return None

    @staticmethod
    def _alive(pid: int) -> bool:
        try:
            # Signal 0 only checks that the process exists
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists but owned by someone else
            return True
        return True

    def is_running(self) -> bool:
        """Check whether the recorded process is alive."""
        pid = self.read()
        return pid is not None and self._alive(pid)

    def get_pid(self) -> Optional[int]:
        """Get the PID if the recorded process is alive."""
        pid = self.read()
        if pid is not None and self._alive(pid):
            return pid
        return None

    def clear_if_stale(self) -> bool:
        """Remove the file if its process is gone.

        Returns:
            True if a stale file was removed
        """
        pid = self.read()
        if pid is None or self._alive(pid):
            return False
        self.remove()
        return True

    def acquire(self) -> None:
        """Claim the PID file for this process.

        Raises:
            DaemonAlreadyRunningError: If another live process owns it
        """
        pid = self.get_pid()
        if pid is not None and pid != os.getpid():
            raise DaemonAlreadyRunningError(pid, self.path)
        self.create()

    def send_signal(self, sig: int = signal.SIGTERM) -> Optional[int]:
        """Send a signal to the recorded process.

        Returns:
            The PID signalled, or None if no live process was recorded
        """
        pid = self.get_pid()
        if pid is None:
            return None
        os.kill(pid, sig)
        return pid

    def __enter__(self) -> "PIDFile":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.remove()
