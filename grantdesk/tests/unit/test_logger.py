"""Tests for the operational logging helper."""

from __future__ import annotations

import logging

from grantdesk import logger


def test_log_joins_parts_and_renders_metadata_pairs(caplog) -> None:
    caplog.set_level(logging.INFO)

    logger.log("[billing]", "checkout", None, user_id="user-1", plan="max")

    assert "[billing] checkout | plan=max user_id=user-1" in caplog.messages


def test_log_skips_empty_metadata(caplog) -> None:
    caplog.set_level(logging.INFO)

    logger.log("[billing] received event", "invoice.paid", event_id=None)

    assert "[billing] received event invoice.paid" in caplog.messages
