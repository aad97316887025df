from __future__ import annotations

import os
from pathlib import Path


def tilda_home() -> Path:
    env = os.environ.get("TILDA_HOME", "").strip()
    if env:
        return Path(env).expanduser().resolve()
    xdg = os.environ.get("XDG_CONFIG_HOME", "").strip()
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return (base / "tilda").resolve()


def config_path(instance_id: int) -> Path:
    return tilda_home() / f"config_{int(instance_id)}.yaml"
