"""Retry configuration for L402 clients.

Options can be given directly or resolved from environment variables:

    L402_PROOF_HEADER   header used when a challenge has no hint
    L402_MAX_RETRIES    pay-and-retry cycles per request

Placeholder values such as "${L402_MAX_RETRIES}" are ignored.
"""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from l402_fetch.exceptions import ConfigurationError
from l402_fetch.models import Challenge

DEFAULT_PROOF_HEADER = "x-l402-proof"
DEFAULT_MAX_RETRIES = 1


@dataclass(frozen=True)
class PaymentResult:
    """What a pay callback hands back: the proof to attach on retry."""

    proof: str


PayResult = Union[PaymentResult, Mapping[str, Any]]
PayCallback = Callable[[Challenge], Union[PayResult, Awaitable[PayResult]]]


def _is_real_value(val: str | None) -> bool:
    """Check if an env var value is set and not a placeholder."""
    if not val:
        return False
    return not val.startswith("${")


@dataclass(frozen=True)
class L402Options:
    """Configuration for one L402 client.

    Args:
        pay: Callback that pays a challenge and returns its proof. Required.
        proof_header_name: Header for the proof when the challenge gives no
            hint (default ``x-l402-proof``).
        max_retries: Pay-and-retry cycles per request (default 1). Negative
            values are clamped to 0.
    """

    pay: PayCallback | None = field(default=None, repr=False)
    proof_header_name: str = DEFAULT_PROOF_HEADER
    max_retries: int = DEFAULT_MAX_RETRIES

    def __post_init__(self) -> None:
        if self.pay is None:
            raise ConfigurationError("pay callback is required")
        if not callable(self.pay):
            raise ConfigurationError("pay callback must be callable")
        if not self.proof_header_name or not self.proof_header_name.strip():
            raise ConfigurationError("proof_header_name must not be empty")
        if isinstance(self.max_retries, bool) or not isinstance(self.max_retries, int):
            raise ConfigurationError(
                f"max_retries must be an integer, got {self.max_retries!r}"
            )
        object.__setattr__(self, "proof_header_name", self.proof_header_name.strip())
        object.__setattr__(self, "max_retries", max(0, self.max_retries))

    @classmethod
    def from_env(
        cls,
        pay: PayCallback | None,
        environ: Mapping[str, str] | None = None,
    ) -> L402Options:
        """Build options from L402_* environment variables.

        Unset or placeholder variables fall back to the defaults.

        Raises:
            ConfigurationError: If ``pay`` is missing or L402_MAX_RETRIES
                is not an integer.
        """
        env = os.environ if environ is None else environ

        header = env.get("L402_PROOF_HEADER", "")
        proof_header_name = header if _is_real_value(header) else DEFAULT_PROOF_HEADER

        retries = env.get("L402_MAX_RETRIES", "")
        max_retries = DEFAULT_MAX_RETRIES
        if _is_real_value(retries):
            try:
                max_retries = int(retries)
            except ValueError:
                raise ConfigurationError(
                    f"L402_MAX_RETRIES must be an integer, got {retries!r}"
                ) from None

        return cls(pay=pay, proof_header_name=proof_header_name, max_retries=max_retries)
