import asyncio
import os
import random
import signal
import tempfile
import threading
import time
import unittest
from typing import List, Optional
from unittest.mock import patch


def _fresh_instance_id() -> int:
    return random.randint(100_000, 2_000_000_000)


class _ServerThread:
    """A relay server on its own loop, standing in for an already-running instance."""

    def __init__(self, instance_id: int):
        self.instance_id = instance_id
        self.calls: List[str] = []
        self._loop = asyncio.new_event_loop()
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        from tilda.relay.server import start

        asyncio.set_event_loop(self._loop)
        self.handle = self._loop.run_until_complete(start(self.instance_id, self.calls.append))
        self._ready.set()
        self._loop.run_forever()

    def start(self) -> None:
        self._thread.start()
        self._ready.wait(5.0)

    def stop(self) -> None:
        asyncio.run_coroutine_threadsafe(self.handle.stop(), self._loop).result(5.0)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(5.0)
        self._loop.close()


class _FakeWindow:
    """Records tabs instead of spawning them."""

    instances: List["_FakeWindow"] = []

    def __init__(self, instance_id: int, *, working_dir: str = "", shell: Optional[str] = None):
        self.instance_id = instance_id
        self.commands: List[str] = []
        self.first_tab = threading.Event()
        self.closed = False
        _FakeWindow.instances.append(self)

    def add_tab(self, command: str) -> None:
        self.commands.append(command)
        self.first_tab.set()

    def close(self) -> None:
        self.closed = True


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.addCleanup(self._td.cleanup)
        env = patch.dict(os.environ, {"TILDA_HOME": self._td.name})
        env.start()
        self.addCleanup(env.stop)
        logging_setup = patch("tilda.cli.setup_root_json_logging")
        logging_setup.start()
        self.addCleanup(logging_setup.stop)

    def test_secondary_invocation_relays_and_exits_zero(self) -> None:
        from tilda.cli import main

        server = _ServerThread(_fresh_instance_id())
        server.start()
        self.addCleanup(server.stop)

        code = main(["-T", str(server.instance_id), "-c", "ls -la"])
        self.assertEqual(code, 0)
        self.assertEqual(server.calls, ["ls -la"])

    def test_command_defaults_to_config(self) -> None:
        from tilda.cli import main
        from tilda.kernel.config import config_setstr

        server = _ServerThread(_fresh_instance_id())
        server.start()
        self.addCleanup(server.stop)
        config_setstr("command", "htop", instance_id=server.instance_id)

        self.assertEqual(main(["--instance", str(server.instance_id)]), 0)
        self.assertEqual(server.calls, ["htop"])

    def test_primary_invocation_serves_until_sigterm(self) -> None:
        from tilda.cli import main
        from tilda.relay.arbitration import relay_command
        from tilda.relay.client import connect
        from tilda.relay.errors import NoServerError

        iid = _fresh_instance_id()
        _FakeWindow.instances = []
        relayed: List[Optional[int]] = []

        def _second_invocation() -> None:
            try:
                for _ in range(250):
                    if _FakeWindow.instances and _FakeWindow.instances[0].first_tab.is_set():
                        break
                    time.sleep(0.02)
                relayed.append(relay_command(iid, "htop"))
            finally:
                os.kill(os.getpid(), signal.SIGTERM)

        helper = threading.Thread(target=_second_invocation, daemon=True)
        helper.start()
        with patch("tilda.cli.TildaWindow", _FakeWindow):
            code = main(["-T", str(iid), "-c", "ls"])
        helper.join(5.0)

        self.assertEqual(code, 0)
        self.assertEqual(relayed, [0])
        self.assertEqual(len(_FakeWindow.instances), 1)
        window = _FakeWindow.instances[0]
        self.assertEqual(window.commands, ["ls", "htop"])
        self.assertTrue(window.closed)
        with self.assertRaises(NoServerError):
            connect(iid)

    def test_call_error_exits_non_zero(self) -> None:
        from tilda.cli import main
        from tilda.relay.errors import CallRejectedError

        with patch("tilda.cli.arbitrate", side_effect=CallRejectedError("nope", code="unknown_method")):
            self.assertEqual(main(["-T", str(_fresh_instance_id()), "-c", "ls"]), 1)

    def test_bind_error_exits_non_zero(self) -> None:
        from tilda.cli import main
        from tilda.relay.errors import BindError

        with patch("tilda.cli.arbitrate", side_effect=BindError("no sockets", reason=BindError.TRANSPORT)):
            self.assertEqual(main(["-T", str(_fresh_instance_id()), "-c", "ls"]), 1)

    def test_non_zero_status_exits_non_zero(self) -> None:
        from tilda.cli import main
        from tilda.relay.arbitration import Arbitration, Role

        with patch("tilda.cli.arbitrate", return_value=Arbitration(role=Role.CLIENT, status=3)):
            self.assertEqual(main(["-T", str(_fresh_instance_id()), "-c", "ls"]), 1)


if __name__ == "__main__":
    unittest.main()
