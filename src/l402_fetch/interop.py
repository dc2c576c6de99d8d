"""Interop harness: run the client against common L402 challenge shapes.

Usage:
    l402-interop
    python -m l402_fetch.interop

Prints a JSON report and exits non-zero if any variant failed.
"""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import asdict, dataclass, field
from typing import Any

import httpx

from l402_fetch.client import fetch_with_l402
from l402_fetch.mock_server import JSON_VARIANTS, MockL402Transport, MockServerOptions
from l402_fetch.models import Challenge
from l402_fetch.options import PaymentResult

logger = logging.getLogger(__name__)

MOCK_URL = "http://mock.l402.test/paid"


@dataclass
class InteropResult:
    name: str
    status: int
    body: Any
    saw_invoice: bool = False
    saw_expected_hint: bool = False

    @property
    def ok(self) -> bool:
        return self.status == 200 and self.saw_invoice and self.saw_expected_hint


@dataclass
class InteropReport:
    results: list[InteropResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return bool(self.results) and all(r.ok for r in self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "results": [{**asdict(r), "ok": r.ok} for r in self.results],
        }


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def run_variant(
    name: str, options: MockServerOptions, expected_hint: str | None
) -> InteropResult:
    """Fetch the mock's paid path once and check what the pay callback saw."""
    seen: list[Challenge] = []

    def pay(challenge: Challenge) -> PaymentResult:
        seen.append(challenge)
        return PaymentResult(proof=options.required_proof)

    response = fetch_with_l402(
        "GET", MOCK_URL, pay, transport=MockL402Transport(options)
    )
    result = InteropResult(name=name, status=response.status_code, body=_decode(response))
    if seen:
        result.saw_invoice = bool(seen[0].invoice)
        result.saw_expected_hint = seen[0].proof_header_hint == expected_hint
    logger.debug(f"{name}: status={result.status} ok={result.ok}")
    return result


def run_interop_harness() -> InteropReport:
    """Exercise every JSON nesting variant and the WWW-Authenticate variant."""
    report = InteropReport()

    for variant in JSON_VARIANTS:
        options = MockServerOptions(
            json_variant=variant,
            invoice_key="payment_request",
            include_proof_header_hint=True,
        )
        report.results.append(
            run_variant(f"json:{variant}", options, expected_hint=options.proof_header)
        )

    header_options = MockServerOptions(
        challenge_in_header=True,
        proof_header="authorization",
        include_proof_header_hint=True,
        invoice_key="payreq",
    )
    report.results.append(
        run_variant("www-authenticate:l402", header_options, expected_hint="authorization")
    )
    return report


def main() -> int:
    report = run_interop_harness()
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.ok else 1


if __name__ == "__main__":
    sys.exit(main())
