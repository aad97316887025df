import random
import unittest
from typing import List
from unittest.mock import patch


def _fresh_instance_id() -> int:
    return random.randint(100_000, 2_000_000_000)


class TestArbitrate(unittest.IsolatedAsyncioTestCase):
    async def test_first_process_serves_second_relays(self) -> None:
        from tilda.relay.arbitration import Role, arbitrate

        iid = _fresh_instance_id()
        first_tabs: List[str] = []
        second_tabs: List[str] = []

        first = await arbitrate(iid, first_tabs.append, "bash")
        self.assertIs(first.role, Role.SERVER)
        assert first.handle is not None
        self.addAsyncCleanup(first.handle.stop)
        self.assertEqual(first_tabs, [])

        second = await arbitrate(iid, second_tabs.append, "htop")
        self.assertIs(second.role, Role.CLIENT)
        self.assertEqual(second.status, 0)
        self.assertIsNone(second.handle)
        self.assertEqual(first_tabs, ["htop"])
        self.assertEqual(second_tabs, [])

    async def test_lost_bind_race_falls_back_to_client(self) -> None:
        from tilda.relay import arbitration
        from tilda.relay.server import start

        iid = _fresh_instance_id()
        tabs: List[str] = []
        handle = await start(iid, tabs.append)
        self.addAsyncCleanup(handle.stop)

        real_relay = arbitration.relay_command
        attempts: List[int] = []

        def _relay(*args, **kwargs):
            attempts.append(1)
            if len(attempts) == 1:
                # Pretend the other process had not bound yet.
                return None
            return real_relay(*args, **kwargs)

        with patch.object(arbitration, "relay_command", side_effect=_relay):
            outcome = await arbitration.arbitrate(iid, lambda command: None, "ls")

        self.assertIs(outcome.role, arbitration.Role.CLIENT)
        self.assertEqual(outcome.status, 0)
        self.assertEqual(len(attempts), 2)
        self.assertEqual(tabs, ["ls"])

    async def test_bind_race_without_server_reraises(self) -> None:
        from tilda.relay import arbitration
        from tilda.relay.errors import BindError

        in_use = BindError("taken", reason=BindError.ADDRESS_IN_USE)
        with patch.object(arbitration, "relay_command", return_value=None) as relay, patch.object(
            arbitration, "start", side_effect=in_use
        ):
            with self.assertRaises(BindError):
                await arbitration.arbitrate(_fresh_instance_id(), lambda command: None, "ls")
        self.assertEqual(relay.call_count, 2)

    async def test_transport_bind_error_is_not_retried(self) -> None:
        from tilda.relay import arbitration
        from tilda.relay.errors import BindError

        broken = BindError("no sockets", reason=BindError.TRANSPORT)
        with patch.object(arbitration, "relay_command", return_value=None) as relay, patch.object(
            arbitration, "start", side_effect=broken
        ):
            with self.assertRaises(BindError) as ctx:
                await arbitration.arbitrate(_fresh_instance_id(), lambda command: None, "ls")
        self.assertFalse(ctx.exception.address_in_use)
        self.assertEqual(relay.call_count, 1)


class TestRelayCommand(unittest.TestCase):
    def test_no_server_returns_none(self) -> None:
        from tilda.relay.arbitration import relay_command

        self.assertIsNone(relay_command(_fresh_instance_id(), "ls"))

    def test_connect_transport_error_is_treated_as_no_server(self) -> None:
        from tilda.relay import arbitration
        from tilda.relay.errors import ConnectTransportError

        with patch.object(
            arbitration.relay_client, "connect", side_effect=ConnectTransportError("permission denied")
        ), self.assertLogs("tilda.relay.arbitration", level="WARNING") as cm:
            self.assertIsNone(arbitration.relay_command(_fresh_instance_id(), "ls"))
        self.assertTrue(any("assuming no server" in line for line in cm.output))


if __name__ == "__main__":
    unittest.main()
