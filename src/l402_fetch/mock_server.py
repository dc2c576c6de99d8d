"""In-process mock L402 server for tests and interop checks.

Mount it as an httpx transport; it works with both sync and async clients:

    transport = MockL402Transport(MockServerOptions(json_variant="data"))
    client = L402Client(pay=my_pay, transport=transport)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from l402_fetch.header import format_www_authenticate

JSON_VARIANTS = ("flat", "l402", "data", "error.l402", "details")


@dataclass
class MockServerOptions:
    """Shape of the challenge the mock server emits.

    Args:
        path: Path that requires payment.
        proof_header: Header the server checks on retry.
        required_proof: Proof value considered valid.
        invoice: Invoice string placed in the challenge.
        invoice_key: Field name the invoice is sent under.
        macaroon: Macaroon sent with header challenges.
        challenge_in_header: Send the challenge in WWW-Authenticate instead
            of the JSON body.
        scheme: WWW-Authenticate scheme (``L402`` or ``LSAT``).
        json_variant: Nesting of the JSON challenge, one of JSON_VARIANTS.
        include_proof_header_hint: Tell the client which header to use.
    """

    path: str = "/paid"
    proof_header: str = "x-l402-proof"
    required_proof: str = "paid"
    invoice: str = "lnbc1mockinvoice"
    invoice_key: str = "invoice"
    macaroon: str = "mockmacaroon"
    challenge_in_header: bool = False
    scheme: str = "L402"
    json_variant: str = "flat"
    include_proof_header_hint: bool = True

    def __post_init__(self) -> None:
        if self.json_variant not in JSON_VARIANTS:
            raise ValueError(
                f"json_variant must be one of {JSON_VARIANTS}, got {self.json_variant!r}"
            )
        self.proof_header = self.proof_header.lower()


def _wrap(challenge: dict[str, Any], variant: str) -> dict[str, Any]:
    if variant == "flat":
        return challenge
    body = challenge
    for part in reversed(variant.split(".")):
        body = {part: body}
    return body


class MockL402Transport(httpx.BaseTransport, httpx.AsyncBaseTransport):
    """Simulates an L402 server: 402 until the proof header matches, then 200."""

    def __init__(self, options: MockServerOptions | None = None):
        self.options = options or MockServerOptions()
        self.request_count = 0
        self.requests: list[httpx.Request] = []

    def challenge_body(self) -> dict[str, Any]:
        opts = self.options
        challenge: dict[str, Any] = {opts.invoice_key: opts.invoice}
        if opts.include_proof_header_hint:
            challenge["proofHeader"] = opts.proof_header
        challenge["meta"] = {"kind": "mock"}
        return _wrap(challenge, opts.json_variant)

    def challenge_header(self) -> str:
        opts = self.options
        params = {"macaroon": opts.macaroon, opts.invoice_key: opts.invoice}
        if opts.include_proof_header_hint:
            params["proof_header"] = opts.proof_header
        return format_www_authenticate(params, scheme=opts.scheme)

    def _payment_required(self) -> httpx.Response:
        if self.options.challenge_in_header:
            return httpx.Response(
                402,
                headers={"WWW-Authenticate": self.challenge_header()},
                json={"error": "Payment Required"},
            )
        return httpx.Response(402, json=self.challenge_body())

    def _respond(self, request: httpx.Request) -> httpx.Response:
        self.request_count += 1
        self.requests.append(request)
        opts = self.options

        if request.url.path == "/healthz":
            return httpx.Response(200, json={"ok": True})

        if request.url.path != opts.path:
            return httpx.Response(404, text="not found")

        if request.headers.get(opts.proof_header, "") != opts.required_proof:
            return self._payment_required()

        return httpx.Response(200, json={"ok": True, "paid": True})

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        return self._respond(request)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return self._respond(request)
