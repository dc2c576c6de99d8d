"""L402 exceptions."""


class L402Error(Exception):
    """Base exception for l402-fetch."""


class ConfigurationError(L402Error):
    """Client options are missing or invalid."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid L402 configuration: {reason}")


class PaymentFailedError(L402Error):
    """The pay callback did not produce a usable proof."""

    def __init__(self, reason: str, invoice: str | None = None):
        self.reason = reason
        self.invoice = invoice
        super().__init__(f"Payment failed: {reason}")


class ChallengeParseError(L402Error):
    """Failed to parse an L402 challenge from a WWW-Authenticate header."""

    def __init__(self, header: str, reason: str):
        self.header = header
        self.reason = reason
        super().__init__(f"Failed to parse L402 challenge: {reason}")
