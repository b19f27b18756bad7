"""Operational log lines for billing and admin actions.

Messages carry a ``[billing]`` or ``[admin]`` prefix; keyword metadata such
as ``user_id``, ``event_id`` or ``plan`` is rendered as ``key=value`` pairs
so a single user's or Stripe event's trail can be grepped out of the logs.
"""

from __future__ import annotations

import logging
from typing import Any

_LOGGER = logging.getLogger("grantdesk")


def _coerce(parts: tuple[object, ...]) -> str:
    rendered = " ".join(str(part) for part in parts if part is not None)
    return rendered.strip()


def _render_metadata(metadata: dict[str, Any]) -> str:
    return " ".join(f"{key}={value}" for key, value in sorted(metadata.items()) if value is not None)


def log(*parts: object, **metadata: Any) -> None:
    """Emit an info-level line; ``None`` parts and metadata values are skipped."""

    message = _coerce(parts)
    rendered = _render_metadata(metadata)
    if rendered:
        message = f"{message} | {rendered}"

    if not _LOGGER.handlers:
        logging.basicConfig(level=logging.INFO)

    _LOGGER.info(message)


__all__ = ["log"]
