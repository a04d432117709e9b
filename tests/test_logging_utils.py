import logging
import tempfile
import unittest
from pathlib import Path

from deoldify_engine.utils.logging_utils import (
    ColorizationLogger,
    LoggingContext,
    log_function_call,
)


class TestLoggingUtils(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()

    def tearDown(self):
        for handler in list(logging.getLogger("engine_test_files").handlers):
            handler.close()
            logging.getLogger("engine_test_files").removeHandler(handler)
        self.temp_dir.cleanup()

    def test_file_handlers_only_with_log_dir(self):
        console_only = ColorizationLogger("engine_test_console")
        self.assertEqual(len(console_only.logger.handlers), 1)

        with_files = ColorizationLogger("engine_test_files", log_dir=self.temp_dir.name)
        self.assertEqual(len(with_files.logger.handlers), 3)
        with_files.logger.error("disk full")
        for handler in with_files.logger.handlers:
            handler.flush()
        self.assertIn("disk full", (Path(self.temp_dir.name) / "engine_test_files_errors.log").read_text())

    def test_context_records_metrics_and_reraises(self):
        logger = ColorizationLogger("engine_test_context")
        with self.assertLogs("engine_test_context", level="INFO") as logs:
            with LoggingContext("load", logger, metrics={'variant': 'stable'}) as ctx:
                pass
        self.assertIsNotNone(ctx.duration)
        self.assertTrue(any('"variant": "stable"' in line for line in logs.output))

        with self.assertLogs("engine_test_context", level="ERROR"):
            with self.assertRaises(ValueError):
                with LoggingContext("fail", logger):
                    raise ValueError("boom")

    def test_model_and_pass_records(self):
        logger = ColorizationLogger("engine_test_records")
        with self.assertLogs("engine_test_records", level="INFO") as logs:
            logger.log_model_load("artistic", "models/Artistic.model", True, 1234, 57)
            logger.log_colorization("artistic", (480, 640), (256, 341), 1.23456)
        self.assertIn('"precision": "half"', logs.output[0])
        self.assertIn('"render_size": [256, 341]', logs.output[1])

    def test_decorator_keeps_name_and_result(self):
        @log_function_call
        def add(a, b):
            return a + b

        self.assertEqual(add.__name__, "add")
        self.assertEqual(add(2, 3), 5)


if __name__ == "__main__":
    unittest.main()
