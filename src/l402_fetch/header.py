"""Parse and format L402/LSAT challenges carried in WWW-Authenticate.

Not a full RFC 9110 parser. It accepts the shapes L402 servers actually send:

    L402 macaroon="<mac>", invoice="<bolt11>"
    L402 macaroon=<mac> invoice=<bolt11>
    LSAT, macaroon="<mac>"; payreq="<bolt11>"           (legacy scheme)
    Basic realm="x", L402 invoice="<bolt11>"             (merged headers)
"""

from __future__ import annotations

import logging
import re
import string
from collections.abc import Mapping

from l402_fetch.exceptions import ChallengeParseError
from l402_fetch.models import Challenge, ChallengeSource
from l402_fetch.rules import (
    HEADER_INVOICE,
    HEADER_MACAROON,
    HEADER_PROOF_HEADER,
    is_string,
    lookup,
)

logger = logging.getLogger(__name__)

SCHEMES = frozenset({"l402", "lsat"})

# Header challenges retry through Authorization unless they say otherwise.
DEFAULT_HEADER_PROOF_HEADER = "authorization"

# Quoted strings are matched first so commas inside them never split.
_SEGMENT_BOUNDARY_RE = re.compile(
    r'"(?:[^"\\]|\\.)*"'
    r"|,\s*(?=(?:L402|LSAT)(?:[\s,]|$))",
    re.IGNORECASE | re.DOTALL,
)

_SCHEME_RE = re.compile(r"^\s*(?P<scheme>[^\s,]+)\s*,?(?P<rest>.*)$", re.DOTALL)

# key="quoted \"value\"" or key=token, separated by anything.
_PARAM_RE = re.compile(
    r"(?P<key>[A-Za-z0-9_\-]+)\s*="
    r'(?:"(?P<quoted>(?:[^"\\]|\\.)*)"|(?P<token>[^\s,;"]*))',
    re.DOTALL,
)

_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)


def split_challenges(value: str) -> list[str]:
    """Split a (possibly comma-merged) header value into challenge segments.

    A comma only starts a new segment when an L402/LSAT scheme token follows
    it, so commas between parameters stay inside their segment.
    """
    segments: list[str] = []
    start = 0
    for match in _SEGMENT_BOUNDARY_RE.finditer(value):
        if match.group(0).startswith('"'):
            continue
        segments.append(value[start : match.start()])
        start = match.end()
    segments.append(value[start:])
    return [s.strip() for s in segments if s.strip()]


def split_scheme(segment: str) -> tuple[str, str]:
    """Return ``(scheme, params)`` with the scheme lowercased.

    Both ``L402 k=v`` and ``L402, k=v`` are accepted.
    """
    match = _SCHEME_RE.match(segment)
    if not match:
        return "", ""
    scheme = match.group("scheme").rstrip(string.punctuation).lower()
    return scheme, match.group("rest").strip()


def parse_auth_params(text: str) -> dict[str, str]:
    """Parse ``key=value`` / ``key="value"`` pairs into a dict.

    Separators may be commas, semicolons or whitespace, mixed freely. Keys
    are lowercased; a repeated key keeps its last value.
    """
    params: dict[str, str] = {}
    for match in _PARAM_RE.finditer(text):
        quoted = match.group("quoted")
        if quoted is not None:
            value = _ESCAPE_RE.sub(r"\1", quoted)
        else:
            value = match.group("token")
        params[match.group("key").lower()] = value
    return params


def _challenge_from_params(params: Mapping[str, str]) -> Challenge | None:
    invoice = lookup(params, HEADER_INVOICE)
    if invoice is None:
        return None

    metadata: dict[str, str] = {}
    macaroon = lookup(params, HEADER_MACAROON, accept=is_string)
    if macaroon is not None:
        metadata["macaroon"] = macaroon

    hint = lookup(params, HEADER_PROOF_HEADER)
    return Challenge(
        invoice=invoice,
        proof_header_hint=hint or DEFAULT_HEADER_PROOF_HEADER,
        metadata=metadata,
        source=ChallengeSource.HEADER,
    )


def parse_www_authenticate(header: str) -> Challenge:
    """Parse a WWW-Authenticate header value containing an L402 challenge.

    The first L402/LSAT segment that carries an invoice wins.

    Args:
        header: The WWW-Authenticate header value.

    Returns:
        The parsed challenge, with the proof header hint defaulting to
        ``authorization``.

    Raises:
        ChallengeParseError: If no segment yields an invoice.
    """
    if not header or not header.strip():
        raise ChallengeParseError(header, "empty header")

    saw_scheme = False
    for segment in split_challenges(header):
        scheme, rest = split_scheme(segment)
        if scheme not in SCHEMES:
            logger.debug(f"Skipping non-L402 challenge segment with scheme {scheme!r}")
            continue
        saw_scheme = True
        challenge = _challenge_from_params(parse_auth_params(rest))
        if challenge is not None:
            return challenge
        logger.debug("L402 challenge segment carries no invoice")

    if not saw_scheme:
        raise ChallengeParseError(header, "no L402/LSAT challenge found")
    raise ChallengeParseError(header, "no invoice in L402/LSAT challenge")


def find_www_authenticate(headers: Mapping[str, str]) -> str:
    """Return the WWW-Authenticate value, matching the name case-insensitively.

    Values stored under differently-cased names are comma-joined, the same
    way HTTP stacks merge repeated headers.
    """
    values = [v for k, v in headers.items() if k.lower() == "www-authenticate" and v]
    return ", ".join(values)


# ── Formatting (servers and test fixtures) ───────────────────────────────


def quote_param(value: str) -> str:
    """Render ``value`` as a quoted string, escaping ``"`` and ``\\``."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_www_authenticate(
    params: Mapping[str, str], scheme: str = "L402", quote: bool = True
) -> str:
    """Build a WWW-Authenticate challenge, e.g. ``L402 macaroon="..", invoice=".."``."""
    rendered = ", ".join(
        f"{key}={quote_param(value) if quote else value}" for key, value in params.items()
    )
    return f"{scheme} {rendered}" if rendered else scheme


def format_l402_token(macaroon: str, preimage: str) -> str:
    """Authorization value proving payment: ``L402 <macaroon>:<preimage>``."""
    return f"L402 {macaroon}:{preimage}"
