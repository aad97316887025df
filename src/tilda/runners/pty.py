from __future__ import annotations

import fcntl
import os
import pty
import selectors
import signal
import struct
import subprocess
import threading
import time
from collections import deque
from pathlib import Path
from typing import Callable, Dict, Iterable, Optional

import termios


def _set_winsize(fd: int, *, cols: int, rows: int) -> None:
    try:
        winsize = struct.pack("HHHH", int(rows), int(cols), 0, 0)
        fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)
    except OSError:
        pass


def _best_effort_killpg(pid: int, sig: signal.Signals) -> None:
    if pid <= 0:
        return
    try:
        os.killpg(pid, sig)
    except OSError:
        try:
            os.kill(pid, sig)
        except OSError:
            pass


class TabSession:
    """A child process attached to its own PTY, with a bounded output backlog."""

    def __init__(
        self,
        *,
        name: str,
        cwd: Path,
        command: Iterable[str],
        env: Optional[Dict[str, str]] = None,
        on_exit: Optional[Callable[["TabSession"], None]] = None,
        max_backlog_bytes: int = 2_000_000,
        cols: int = 80,
        rows: int = 24,
    ) -> None:
        self.name = name
        self._on_exit = on_exit
        self._max_backlog_bytes = int(max_backlog_bytes)
        self._selector = selectors.DefaultSelector()
        self._lock = threading.Lock()
        self._backlog: deque[bytes] = deque()
        self._backlog_bytes = 0

        master_fd, slave_fd = pty.openpty()
        _set_winsize(master_fd, cols=cols, rows=rows)
        os.set_blocking(master_fd, False)

        cmd = [str(x) for x in command if isinstance(x, str) and str(x).strip()]
        if not cmd:
            cmd = ["bash"] if Path("/bin/bash").exists() else ["sh"]

        proc_env = os.environ.copy()
        proc_env.update({k: v for k, v in (env or {}).items() if isinstance(k, str) and isinstance(v, str)})
        proc_env.setdefault("TERM", "xterm-256color")

        def _preexec() -> None:
            os.setsid()
            try:
                fcntl.ioctl(0, termios.TIOCSCTTY, 0)
            except OSError:
                pass

        try:
            self._proc = subprocess.Popen(
                cmd,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=str(cwd),
                env=proc_env,
                close_fds=True,
                preexec_fn=_preexec,
            )
        except OSError:
            self._selector.close()
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)

        self._master_fd = master_fd
        self._running = True
        self._selector.register(master_fd, selectors.EVENT_READ)

        self._thread = threading.Thread(target=self._loop, name=f"tilda-tab:{name}", daemon=True)
        self._thread.start()

    @property
    def pid(self) -> int:
        return int(getattr(self._proc, "pid", 0) or 0)

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.poll()

    def is_running(self) -> bool:
        return bool(self._running) and self._proc.poll() is None

    def tail_output(self, *, max_bytes: int = 2_000_000) -> bytes:
        """Return the latest PTY output bytes (bounded)."""
        limit = int(max_bytes or 0) or self._max_backlog_bytes or 2_000_000
        with self._lock:
            data = b"".join(self._backlog)
        return data[-limit:] if len(data) > limit else data

    def stop(self) -> None:
        self._running = False
        _best_effort_killpg(self.pid, signal.SIGTERM)
        deadline = time.time() + 1.0
        while time.time() < deadline:
            if self._proc.poll() is not None:
                break
            time.sleep(0.05)
        if self._proc.poll() is None:
            _best_effort_killpg(self.pid, signal.SIGKILL)
            self._proc.wait()
        self._thread.join(timeout=1.0)

    def _append_backlog(self, chunk: bytes) -> None:
        self._backlog.append(chunk)
        self._backlog_bytes += len(chunk)
        limit = max(0, self._max_backlog_bytes)
        while limit and self._backlog_bytes > limit and self._backlog:
            drop = self._backlog.popleft()
            self._backlog_bytes -= len(drop)

    def _drain(self) -> bool:
        """Read whatever the PTY has buffered; False once it reports EOF."""
        while True:
            try:
                chunk = os.read(self._master_fd, 65536)
            except BlockingIOError:
                return True
            except OSError:
                # EIO: the child side of the PTY is gone.
                return False
            if not chunk:
                return False
            with self._lock:
                self._append_backlog(chunk)

    def _loop(self) -> None:
        try:
            while self._running and self._proc.poll() is None:
                for _key, mask in self._selector.select(timeout=0.1):
                    if mask & selectors.EVENT_READ and not self._drain():
                        self._running = False
                        break
            self._drain()
        finally:
            self._running = False
            self._selector.close()
            os.close(self._master_fd)
            if self._on_exit is not None:
                self._on_exit(self)
