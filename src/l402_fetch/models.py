"""Normalized L402 challenge shared by the header and body parsers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ChallengeSource(str, Enum):
    """Where a challenge was found in the 402 response."""

    HEADER = "header"
    BODY = "body"


@dataclass(frozen=True)
class Challenge:
    """A payment challenge extracted from an HTTP 402 response.

    ``invoice`` is passed through verbatim and never validated.
    ``proof_header_hint`` names the header the server wants the proof in;
    ``None`` means the client's configured default applies.
    ``source`` is ``None`` for challenges built by hand.
    """

    invoice: str
    proof_header_hint: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    source: ChallengeSource | None = None

    @property
    def macaroon(self) -> str | None:
        value = self.metadata.get("macaroon")
        return value if isinstance(value, str) else None
