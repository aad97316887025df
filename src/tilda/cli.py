from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from . import __version__
from .kernel.config import config_getfloat, config_getstr
from .kernel.window import TildaWindow
from .relay import ADDTAB_SUCCESS, BindError, CallError, Role, arbitrate
from .util.obslog import setup_root_json_logging

logger = logging.getLogger("tilda.cli")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tilda", description="Drop-down terminal; one window per instance")
    p.add_argument("-T", "--instance", type=int, default=0, help="Instance id (default: 0)")
    p.add_argument("-c", "--command", default=None, help="Command for the new tab (default: config 'command')")
    p.add_argument("--log-level", default="", help="Log level (default: config 'log_level')")
    p.add_argument("--version", action="version", version=f"tilda {__version__}")
    return p


def _exit_code(status: Optional[int]) -> int:
    return 0 if status == ADDTAB_SUCCESS else 1


async def _run_instance(instance_id: int, command: str) -> int:
    window = TildaWindow(instance_id, working_dir=config_getstr("working_dir", instance_id))
    try:
        outcome = await arbitrate(
            instance_id,
            window.add_tab,
            command,
            connect_timeout_s=config_getfloat("connect_timeout", instance_id),
            call_timeout_s=config_getfloat("call_timeout", instance_id),
        )
    except BindError as e:
        logger.error("Cannot serve instance %d: %s", instance_id, e.message, extra={"instance_id": instance_id})
        return 1
    except CallError as e:
        logger.error("addtab failed (%s): %s", e.code, e.message, extra={"instance_id": instance_id})
        return 1

    if outcome.role is Role.CLIENT:
        return _exit_code(outcome.status)

    handle = outcome.handle
    assert handle is not None
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        try:
            window.add_tab(command)
        except OSError as e:
            logger.error("Cannot open the first tab: %s", e, extra={"instance_id": instance_id})
        await stop_event.wait()
    finally:
        await handle.stop()
        window.close()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    instance_id = int(args.instance)
    setup_root_json_logging(component="tilda", level=args.log_level or config_getstr("log_level", instance_id))

    command = args.command if args.command is not None else config_getstr("command", instance_id)
    try:
        return asyncio.run(_run_instance(instance_id, command))
    except KeyboardInterrupt:
        print("tilda: interrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
