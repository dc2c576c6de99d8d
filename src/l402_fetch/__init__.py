"""l402-fetch: HTTP 402 challenge handling for Python.

Parses L402/LSAT payment challenges from 402 responses (WWW-Authenticate
header or JSON body), hands them to your pay callback, and retries the
request with the returned proof attached.

Usage:
    import l402_fetch

    def pay(challenge):
        preimage = my_wallet.pay(challenge.invoice)
        return {"proof": l402_fetch.format_l402_token(challenge.macaroon, preimage)}

    # One-shot
    response = l402_fetch.get("https://api.example.com/paid-resource", pay=pay)

    # Or use the client directly for more control
    from l402_fetch import L402Client

    client = L402Client(pay=pay, max_retries=2)
    response = client.get("https://api.example.com/paid-resource")
"""

from typing import Any

import httpx

from l402_fetch.challenge import (
    Challenge,
    ChallengeSource,
    find_l402_challenge,
    parse_challenge,
)
from l402_fetch.body import parse_json_challenge
from l402_fetch.client import (
    AsyncL402Client,
    L402Client,
    RetryState,
    afetch_with_l402,
    fetch_with_l402,
)
from l402_fetch.exceptions import (
    ChallengeParseError,
    ConfigurationError,
    L402Error,
    PaymentFailedError,
)
from l402_fetch.header import (
    format_l402_token,
    format_www_authenticate,
    parse_www_authenticate,
)
from l402_fetch.options import L402Options, PayCallback, PaymentResult
from l402_fetch.payment_log import PaymentLog, PaymentRecord

__version__ = "0.1.0"

__all__ = [
    # Clients
    "L402Client",
    "AsyncL402Client",
    "fetch_with_l402",
    "afetch_with_l402",
    "RetryState",
    # Configuration
    "L402Options",
    "PayCallback",
    "PaymentResult",
    # Challenges
    "Challenge",
    "ChallengeSource",
    "parse_challenge",
    "find_l402_challenge",
    "parse_www_authenticate",
    "parse_json_challenge",
    "format_www_authenticate",
    "format_l402_token",
    # Payments
    "PaymentLog",
    "PaymentRecord",
    # Exceptions
    "L402Error",
    "ConfigurationError",
    "PaymentFailedError",
    "ChallengeParseError",
]


def get(url: str, *, pay: PayCallback, **kwargs: Any) -> httpx.Response:
    """Convenience: GET with automatic L402 payment."""
    return fetch_with_l402("GET", url, pay, **kwargs)


def post(url: str, *, pay: PayCallback, **kwargs: Any) -> httpx.Response:
    """Convenience: POST with automatic L402 payment."""
    return fetch_with_l402("POST", url, pay, **kwargs)


def put(url: str, *, pay: PayCallback, **kwargs: Any) -> httpx.Response:
    """Convenience: PUT with automatic L402 payment."""
    return fetch_with_l402("PUT", url, pay, **kwargs)


def delete(url: str, *, pay: PayCallback, **kwargs: Any) -> httpx.Response:
    """Convenience: DELETE with automatic L402 payment."""
    return fetch_with_l402("DELETE", url, pay, **kwargs)


def patch(url: str, *, pay: PayCallback, **kwargs: Any) -> httpx.Response:
    """Convenience: PATCH with automatic L402 payment."""
    return fetch_with_l402("PATCH", url, pay, **kwargs)
