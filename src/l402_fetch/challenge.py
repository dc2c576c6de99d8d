"""Find L402 challenges in HTTP 402 responses.

Header challenges take precedence over body challenges. Parsing is
best-effort and never raises: a response without a usable challenge
simply yields None.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from l402_fetch.body import parse_json_challenge
from l402_fetch.exceptions import ChallengeParseError
from l402_fetch.header import find_www_authenticate, parse_www_authenticate
from l402_fetch.models import Challenge, ChallengeSource

logger = logging.getLogger(__name__)

__all__ = [
    "Challenge",
    "ChallengeSource",
    "find_l402_challenge",
    "parse_challenge",
]


def find_l402_challenge(headers: Mapping[str, str]) -> Challenge | None:
    """Search response headers for an L402 challenge.

    Returns:
        Parsed challenge, or None if WWW-Authenticate is absent or holds
        no L402/LSAT challenge with an invoice.
    """
    www_auth = find_www_authenticate(headers)
    if not www_auth:
        return None

    try:
        return parse_www_authenticate(www_auth)
    except ChallengeParseError as e:
        logger.debug(f"Ignoring WWW-Authenticate: {e.reason}")
        return None


def parse_challenge(
    headers: Mapping[str, str], status_code: int, body_text: str
) -> Challenge | None:
    """Extract a challenge from a 402 response's headers and body text.

    Args:
        headers: Response headers (any mapping, e.g. ``httpx.Headers``).
        status_code: Response status, used only for diagnostics.
        body_text: The fully-read response body.

    Returns:
        The header challenge if there is one, else the body challenge,
        else None.
    """
    challenge = find_l402_challenge(headers) or parse_json_challenge(body_text)
    if challenge is None:
        logger.debug(f"No L402 challenge in {status_code} response")
    return challenge
