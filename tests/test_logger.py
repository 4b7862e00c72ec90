"""
Tests for logger configuration.
"""

import logging

from redeem_panel.logger import get_logger


class TestGetLogger:

    def test_single_handler_across_calls(self):
        first = get_logger("redeem_panel.tests.repeat")
        second = get_logger("redeem_panel.tests.repeat")

        assert first is second
        assert len(first.handlers) == 1
        assert first.level == logging.INFO

    def test_does_not_propagate_to_root(self):
        """A configured root logger must not print every line twice."""
        assert get_logger("redeem_panel.tests.root").propagate is False

    def test_default_name(self):
        assert get_logger().name == "redeem-panel"
