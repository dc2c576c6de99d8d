"""Extract L402 challenges from JSON 402 response bodies."""

from __future__ import annotations

import json
import logging
from typing import Any

from l402_fetch.models import Challenge, ChallengeSource
from l402_fetch.rules import (
    BODY_INVOICE,
    BODY_METADATA,
    BODY_PROOF_HEADER,
    is_mapping,
    lookup,
)

logger = logging.getLogger(__name__)


def load_json_object(body_text: str) -> dict[str, Any] | None:
    """Decode ``body_text`` as a JSON object, or None if it isn't one."""
    if not body_text or not body_text.strip():
        return None
    try:
        data = json.loads(body_text)
    except (ValueError, TypeError, RecursionError):
        logger.debug("402 body is not JSON")
        return None
    if not isinstance(data, dict):
        logger.debug(f"402 body is JSON {type(data).__name__}, not an object")
        return None
    return data


def parse_json_challenge(body_text: str) -> Challenge | None:
    """Parse a challenge from a JSON body.

    Accepts ``{"invoice": ...}`` and the wrapped variants servers use, e.g.
    ``{"l402": {...}}``, ``{"data": {...}}``, ``{"error": {"l402": {...}}}``.
    A missing proof header hint stays None.
    """
    data = load_json_object(body_text)
    if data is None:
        return None

    invoice = lookup(data, BODY_INVOICE)
    if invoice is None:
        logger.debug("No invoice found in JSON 402 body")
        return None

    meta = lookup(data, BODY_METADATA, accept=is_mapping)
    return Challenge(
        invoice=invoice,
        proof_header_hint=lookup(data, BODY_PROOF_HEADER),
        metadata=dict(meta) if meta is not None else {},
        source=ChallengeSource.BODY,
    )
