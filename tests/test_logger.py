import logging
import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.logger import LOGGER_NAME, ResourceFormatter, logger


def record(msg):
    return logging.LogRecord(LOGGER_NAME, logging.INFO, __file__, 1, msg, None, None)


class TestResourceFormatter(unittest.TestCase):

    def setUp(self):
        self.formatter = ResourceFormatter()

    def test_state_report(self):
        text = self.formatter.format(record({"resource": "volume v1", "state": "AVAILABLE", "detail": "10 GiB"}))
        lines = text.splitlines()
        self.assertTrue(lines[0].endswith("Resource: volume v1"))
        self.assertEqual(lines[1:], ["State: AVAILABLE", "Detail: 10 GiB"])

    def test_state_report_without_detail(self):
        text = self.formatter.format(record({"resource": "image i1", "state": "PENDING"}))
        self.assertEqual(len(text.splitlines()), 2)

    def test_plain_message(self):
        text = self.formatter.format(record("[volume] something happened"))
        self.assertIn("INFO", text)
        self.assertIn(LOGGER_NAME, text)
        self.assertTrue(text.endswith("[volume] something happened"))


class TestLoggerSetup(unittest.TestCase):

    def test_single_console_handler(self):
        """Test runners may attach their own handlers; only ours carries ResourceFormatter."""
        ours = [
            handler for handler in logger.handlers
            if isinstance(handler, logging.StreamHandler) and isinstance(handler.formatter, ResourceFormatter)
        ]
        self.assertEqual(logger.name, LOGGER_NAME)
        self.assertEqual(len(ours), 1)
        self.assertFalse(logger.propagate)


if __name__ == "__main__":
    unittest.main(verbosity=2)
