import logging
import tempfile
import unittest
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from page_cache.config.models import LoggingSettings
from page_cache.logging import init_logging


def _settings(level: str, path: str) -> LoggingSettings:
    return LoggingSettings.model_validate({"level": level, "file": {"path": path, "rotation": {"backup_count": 2}}})


class InitLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.root = Path(self._tmp.name)

        root_logger = logging.getLogger()
        handlers, level = list(root_logger.handlers), root_logger.level

        def restore_logging() -> None:
            for handler in list(root_logger.handlers):
                root_logger.removeHandler(handler)
                handler.close()
            for handler in handlers:
                root_logger.addHandler(handler)
            root_logger.setLevel(level)
            logging.captureWarnings(False)

        self.addCleanup(restore_logging)

    def test_stream_only(self) -> None:
        init_logging(_settings("warning", ""))

        root_logger = logging.getLogger()
        self.assertEqual(root_logger.level, logging.WARNING)
        self.assertEqual(len(root_logger.handlers), 1)
        self.assertIsInstance(root_logger.handlers[0], logging.StreamHandler)

    def test_file_handler_writes_to_configured_path(self) -> None:
        log_path = self.root / "logs" / "page-cache.log"
        init_logging(_settings("INFO", str(log_path)))

        file_handlers = [h for h in logging.getLogger().handlers if isinstance(h, TimedRotatingFileHandler)]
        self.assertEqual(len(file_handlers), 1)
        self.assertEqual(file_handlers[0].backupCount, 2)

        logging.getLogger("page_cache.test").info("Cache flushed. full_wipe=%s", False)
        file_handlers[0].flush()
        self.assertIn("[INFO][page_cache.test] Cache flushed. full_wipe=False", log_path.read_text(encoding="utf-8"))

    def test_invalid_level_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            init_logging(_settings("LOUD", ""))


if __name__ == "__main__":
    unittest.main()
