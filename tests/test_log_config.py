"""Tests for structlog configuration."""

from __future__ import annotations

import logging
import os
from unittest.mock import patch

import structlog

from kube_switch.log_config import configure_logging


class TestConfigureLogging:
    """Tests for the structlog level and renderer selection."""

    def teardown_method(self) -> None:
        structlog.reset_defaults()

    def test_info_level_by_default(self) -> None:
        with (
            patch.dict(os.environ, {}, clear=False),
            patch("kube_switch.log_config.structlog.make_filtering_bound_logger") as mock_filter,
        ):
            os.environ.pop("KUBESWITCH_DEBUG", None)
            configure_logging()
        mock_filter.assert_called_once_with(logging.INFO)

    def test_debug_flag(self) -> None:
        with patch("kube_switch.log_config.structlog.make_filtering_bound_logger") as mock_filter:
            configure_logging(debug=True)
        mock_filter.assert_called_once_with(logging.DEBUG)

    def test_debug_from_environment(self) -> None:
        with (
            patch.dict(os.environ, {"KUBESWITCH_DEBUG": "1"}),
            patch("kube_switch.log_config.structlog.make_filtering_bound_logger") as mock_filter,
        ):
            configure_logging()
        mock_filter.assert_called_once_with(logging.DEBUG)

    def test_json_output_when_not_a_tty(self) -> None:
        with patch("kube_switch.log_config.sys") as mock_sys:
            mock_sys.stderr.isatty.return_value = False
            configure_logging()
            processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)
