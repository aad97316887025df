import os
import tempfile
import unittest
from pathlib import Path


class TestConfig(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.addCleanup(self._td.cleanup)
        old_home = os.environ.get("TILDA_HOME")
        os.environ["TILDA_HOME"] = self._td.name

        def _restore() -> None:
            if old_home is None:
                os.environ.pop("TILDA_HOME", None)
            else:
                os.environ["TILDA_HOME"] = old_home

        self.addCleanup(_restore)

    def test_missing_file_yields_defaults(self) -> None:
        from tilda.kernel.config import DEFAULT_CONFIG, config_getfloat, config_getstr, load_config

        self.assertEqual(load_config(0), DEFAULT_CONFIG)
        self.assertEqual(config_getstr("command"), "")
        self.assertEqual(config_getstr("log_level"), "INFO")
        self.assertEqual(config_getfloat("call_timeout"), 5.0)

    def test_setstr_persists_per_instance(self) -> None:
        from tilda.kernel.config import config_getstr, config_setstr

        config_setstr("command", "htop", instance_id=3)
        self.assertEqual(config_getstr("command", instance_id=3), "htop")
        self.assertEqual(config_getstr("command", instance_id=0), "")
        self.assertTrue((Path(self._td.name) / "config_3.yaml").exists())

    def test_file_values_override_defaults(self) -> None:
        from tilda.kernel.config import config_getfloat, config_getstr

        (Path(self._td.name) / "config_1.yaml").write_text(
            "command: tmux attach\nconnect_timeout: 0.25\n", encoding="utf-8"
        )
        self.assertEqual(config_getstr("command", 1), "tmux attach")
        self.assertEqual(config_getfloat("connect_timeout", 1), 0.25)
        self.assertEqual(config_getfloat("call_timeout", 1), 5.0)

    def test_unreadable_file_falls_back_to_defaults(self) -> None:
        from tilda.kernel.config import DEFAULT_CONFIG, config_getfloat, load_config

        p = Path(self._td.name) / "config_2.yaml"
        p.write_text("command: [unclosed\n", encoding="utf-8")
        self.assertEqual(load_config(2), DEFAULT_CONFIG)
        p.write_text("call_timeout: soon\n", encoding="utf-8")
        self.assertEqual(config_getfloat("call_timeout", 2), 5.0)

    def test_unknown_keys_are_rejected(self) -> None:
        from tilda.kernel.config import config_getfloat, config_getstr, config_setstr

        with self.assertRaises(KeyError):
            config_getstr("font")
        with self.assertRaises(KeyError):
            config_setstr("font", "Monospace 11")
        with self.assertRaises(KeyError):
            config_getfloat("command")


class TestPaths(unittest.TestCase):
    def test_home_falls_back_to_xdg_config(self) -> None:
        from tilda.paths import config_path, tilda_home

        saved = {k: os.environ.get(k) for k in ("TILDA_HOME", "XDG_CONFIG_HOME")}
        try:
            with tempfile.TemporaryDirectory() as td:
                os.environ.pop("TILDA_HOME", None)
                os.environ["XDG_CONFIG_HOME"] = td
                self.assertEqual(tilda_home(), (Path(td) / "tilda").resolve())
                self.assertEqual(config_path(4).name, "config_4.yaml")
        finally:
            for k, v in saved.items():
                if v is None:
                    os.environ.pop(k, None)
                else:
                    os.environ[k] = v


if __name__ == "__main__":
    unittest.main()
