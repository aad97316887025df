"""The terminal window that owns an instance's tabs.

This is the add-tab collaborator the relay server calls into. Tabs are
PTY-backed child processes; rendering them is left to a frontend.
"""
from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ..runners.pty import TabSession

logger = logging.getLogger(__name__)


def default_shell() -> str:
    shell = os.environ.get("SHELL", "").strip()
    if shell:
        return shell
    return "/bin/bash" if Path("/bin/bash").exists() else "/bin/sh"


def tab_argv(command: str, *, shell: Optional[str] = None) -> List[str]:
    """argv for a tab: the shell itself, or the shell running `command`."""
    sh = shell or default_shell()
    if not command.strip():
        return [sh]
    return [sh, "-c", command]


@dataclass
class Tab:
    index: int
    command: str
    session: TabSession

    @property
    def pid(self) -> int:
        return self.session.pid

    def is_running(self) -> bool:
        return self.session.is_running()


class TildaWindow:
    def __init__(self, instance_id: int, *, working_dir: str = "", shell: Optional[str] = None) -> None:
        self.instance_id = int(instance_id)
        self._cwd = Path(working_dir).expanduser() if working_dir.strip() else Path.cwd()
        self._shell = shell
        self._lock = threading.Lock()
        self._tabs: Dict[int, Tab] = {}
        self._next_index = 1

    @property
    def tabs(self) -> List[Tab]:
        with self._lock:
            return [self._tabs[i] for i in sorted(self._tabs)]

    def add_tab(self, command: str) -> Tab:
        with self._lock:
            index = self._next_index
            self._next_index += 1
        session = TabSession(
            name=f"{self.instance_id}:{index}",
            cwd=self._cwd,
            command=tab_argv(command, shell=self._shell),
            on_exit=self._on_tab_exit,
        )
        tab = Tab(index=index, command=command, session=session)
        with self._lock:
            self._tabs[index] = tab
        logger.info(
            "Tab %d opened (pid=%d): %r",
            index,
            tab.pid,
            command,
            extra={"instance_id": self.instance_id, "tab": index},
        )
        return tab

    def _on_tab_exit(self, session: TabSession) -> None:
        logger.info(
            "Tab %s exited with %s",
            session.name,
            session.returncode,
            extra={"instance_id": self.instance_id, "tab": session.name},
        )

    def close(self) -> None:
        with self._lock:
            tabs = list(self._tabs.values())
            self._tabs.clear()
        for tab in tabs:
            tab.session.stop()
