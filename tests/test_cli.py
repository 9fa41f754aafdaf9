import io
import logging
import socket
import sys
import tempfile
import unittest
from contextlib import redirect_stderr
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from pydantic import ValidationError  # noqa: E402

from esqlwatch import cli  # noqa: E402
from esqlwatch.config import Settings  # noqa: E402
from esqlwatch.logs import _BUFFER_CAPACITY, configure_logging, flush_deferred_logs  # noqa: E402
from esqlwatch.render import CTRL_C  # noqa: E402


def _reset_logging() -> None:
    for name in ("esqlwatch", "uvicorn", "uvicorn.error"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.propagate = True
        logger.setLevel(logging.NOTSET)


class SettingsTests(unittest.TestCase):
    def test_defaults(self):
        settings = Settings()
        self.assertEqual(settings.listen, "127.0.0.1:33433")
        self.assertEqual(settings.path, "/data")
        self.assertEqual(settings.max_body_bytes, 4 * 1024 * 1024)
        self.assertEqual(settings.quit_key, "q")
        self.assertEqual(settings.log_level, "WARNING")

    def test_environment_then_overrides(self):
        env = {
            "ESQLWATCH_PORT": "40000",
            "ESQLWATCH_TICK_INTERVAL": "0.5",
            "ESQLWATCH_LOG_LEVEL": "debug",
            "ESQLWATCH_HOST": "",
        }
        settings = Settings.from_env(env, port=41000, host=None)
        self.assertEqual(settings.port, 41000)
        self.assertEqual(settings.tick_interval, 0.5)
        self.assertEqual(settings.log_level, "DEBUG")
        self.assertEqual(settings.host, "127.0.0.1")

    def test_invalid_values_are_rejected(self):
        for kwargs in (
            {"port": 70000},
            {"tick_interval": 0},
            {"max_body_bytes": 0},
            {"quit_key": "qq"},
            {"path": "data"},
            {"log_level": "LOUD"},
            {"unknown": 1},
        ):
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(ValidationError):
                    Settings(**kwargs)

    def test_settings_are_frozen(self):
        with self.assertRaises(ValidationError):
            Settings().port = 1  # type: ignore[misc]


class CliTests(unittest.TestCase):
    def tearDown(self) -> None:
        _reset_logging()

    def test_flags_override_environment(self):
        parser = cli.build_parser()
        args = parser.parse_args(["--port", "5000", "--max-body", "10", "--tick", "1", "--log-level", "info"])
        with mock.patch.dict("os.environ", {"ESQLWATCH_PORT": "6000", "ESQLWATCH_PATH": "/in"}, clear=False):
            settings = cli.resolve_settings(args, parser)
        self.assertEqual(settings.port, 5000)
        self.assertEqual(settings.path, "/in")
        self.assertEqual(settings.max_body_bytes, 10)
        self.assertEqual(settings.tick_interval, 1.0)
        self.assertEqual(settings.log_level, "INFO")

    def test_invalid_configuration_exits(self):
        parser = cli.build_parser()
        args = parser.parse_args(["--tick", "-1"])
        with redirect_stderr(io.StringIO()) as err:
            with self.assertRaises(SystemExit) as ctx:
                cli.resolve_settings(args, parser)
        self.assertEqual(ctx.exception.code, 2)
        self.assertIn("tick_interval", err.getvalue())

    def test_quit_keys_include_both_cases_and_ctrl_c(self):
        self.assertEqual(cli.quit_keys(Settings(quit_key="x")), frozenset({"x", "X", CTRL_C}))

    def test_header_shows_listen_url(self):
        header = cli.display_header(Settings(), ("127.0.0.1", 33433))
        self.assertIn("POST http://127.0.0.1:33433/data", header)
        self.assertIn("[q] quit", header)

    def test_bind_failure_exits_before_terminal_setup(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
            occupied.bind(("127.0.0.1", 0))
            occupied.listen(1)
            port = occupied.getsockname()[1]
            with mock.patch("curses.wrapper") as wrapper, redirect_stderr(io.StringIO()) as err:
                code = cli.main(["--port", str(port)])
        self.assertEqual(code, 1)
        wrapper.assert_not_called()
        self.assertIn("cannot listen", err.getvalue())

    def test_main_runs_display_and_stops_server(self):
        with mock.patch("curses.wrapper") as wrapper, redirect_stderr(io.StringIO()):
            code = cli.main(["--port", "0"])
        self.assertEqual(code, 0)
        wrapper.assert_called_once()
        slot = wrapper.call_args.args[1]
        server = wrapper.call_args.args[2]
        self.assertTrue(slot.closed)
        self.assertFalse(server.running)


class LoggingTests(unittest.TestCase):
    def tearDown(self) -> None:
        _reset_logging()

    def test_log_file_receives_formatted_records(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "logs" / "esqlwatch.log"
            handler = configure_logging("INFO", path)
            logging.getLogger("esqlwatch.server").info("hello %s", "world")
            flush_deferred_logs(handler)
            content = path.read_text(encoding="utf-8")
        self.assertIn("INFO - hello world", content)

    def test_deferred_records_are_held_until_flush(self):
        err = io.StringIO()
        with redirect_stderr(err):
            handler = configure_logging("WARNING", None, defer=True)
            logging.getLogger("esqlwatch.render").warning("redraw failed")
            logging.getLogger("esqlwatch.render").info("hidden")
            self.assertEqual(err.getvalue(), "")
            flush_deferred_logs(handler)
        self.assertIn("WARNING - redraw failed", err.getvalue())
        self.assertNotIn("hidden", err.getvalue())

    def test_full_buffer_stays_off_the_terminal(self):
        err = io.StringIO()
        total = _BUFFER_CAPACITY + 50
        with redirect_stderr(err):
            handler = configure_logging("WARNING", None, defer=True)
            logger = logging.getLogger("esqlwatch.server")
            for index in range(total):
                logger.warning("Rejected payload: %d", index)
            self.assertEqual(err.getvalue(), "")
            flush_deferred_logs(handler)
        lines = err.getvalue().splitlines()
        self.assertEqual(len(lines), _BUFFER_CAPACITY)
        self.assertTrue(lines[0].endswith(f"Rejected payload: {total - _BUFFER_CAPACITY}"))
        self.assertTrue(lines[-1].endswith(f"Rejected payload: {total - 1}"))


if __name__ == "__main__":
    unittest.main()
