import io
import json
import logging
import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from config.logging_config import build_handler, configure_logging, redact
from config.settings import Settings


def _settings(**overrides):
    return Settings(database_url="sqlite:///:memory:", **overrides)


class _CapturingCase(unittest.TestCase):
    def capture(self, settings):
        stream = io.StringIO()
        logger = logging.getLogger(f"tests.logging.{self.id()}")
        logger.propagate = False
        logger.setLevel(logging.DEBUG)
        handler = build_handler(settings, stream=stream)
        logger.addHandler(handler)
        self.addCleanup(logger.removeHandler, handler)
        return logger, stream


class TestRedaction(unittest.TestCase):
    def test_masks_emails_and_tokens(self):
        text = redact("login failed for ada@example.com header=Bearer abc.def-123 tok=eyJhbGci.eyJzdWIi.c2ln")
        self.assertNotIn("ada@example.com", text)
        self.assertNotIn("abc.def-123", text)
        self.assertNotIn("eyJhbGci", text)
        self.assertIn("[redacted-email]", text)

    def test_leaves_ordinary_messages_alone(self):
        msg = "quote served from synthetic data ticker=AAPL"
        self.assertEqual(redact(msg), msg)


class TestJsonLines(_CapturingCase):
    def test_context_fields_become_keys(self):
        logger, stream = self.capture(_settings(log_json=True))

        logger.warning(
            "provider failed op=%s provider=%s ticker=%s",
            "quote", "fmp", "AAPL",
            extra={"provider": "fmp", "ticker": "AAPL"},
        )

        line = json.loads(stream.getvalue().strip())
        self.assertEqual(line["level"], "WARNING")
        self.assertEqual(line["provider"], "fmp")
        self.assertEqual(line["ticker"], "AAPL")
        self.assertEqual(line["message"], "provider failed op=quote provider=fmp ticker=AAPL")
        self.assertNotIn("status", line)

    def test_pii_in_arguments_is_masked(self):
        logger, stream = self.capture(_settings(log_json=True))
        logger.info("registered user %s", "ada@example.com")
        self.assertNotIn("ada@example.com", stream.getvalue())


class TestPlainFormat(_CapturingCase):
    def test_level_filters_records(self):
        logger, stream = self.capture(_settings(log_level="WARNING"))
        logger.info("cache sweep removed=%d", 3)
        logger.warning("cache get failed backend=%s", "redis")

        out = stream.getvalue()
        self.assertNotIn("cache sweep", out)
        self.assertIn("[WARNING]", out)
        self.assertIn("cache get failed backend=redis", out)


class TestConfigureLogging(unittest.TestCase):
    def setUp(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level

        def restore():
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)

        self.addCleanup(restore)

    def test_single_root_handler_and_quiet_libraries(self):
        configure_logging(_settings(log_level="DEBUG"))
        configure_logging(_settings(log_level="DEBUG"))

        root = logging.getLogger()
        self.assertEqual(len(root.handlers), 1)
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(logging.getLogger("httpx").level, logging.WARNING)
        self.assertEqual(logging.getLogger("yahooquery").level, logging.WARNING)


if __name__ == "__main__":
    unittest.main()
