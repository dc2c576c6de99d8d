"""End-to-end tests for L402Client with mock server responses."""

from __future__ import annotations

import json

import httpx
import pytest

from l402_fetch.challenge import Challenge
from l402_fetch.client import (
    AsyncL402Client,
    L402Client,
    RetryState,
    _read_text,
    afetch_with_l402,
    fetch_with_l402,
)
from l402_fetch.exceptions import ConfigurationError, PaymentFailedError
from l402_fetch.mock_server import MockL402Transport, MockServerOptions
from l402_fetch.options import L402Options, PaymentResult
from l402_fetch.payment_log import PaymentLog

URL = "https://api.example.com/paid"


# ── Mock pay callbacks ───────────────────────────────────────────────────

class RecordingPay:
    """Pay callback that returns a fixed proof and remembers challenges."""

    def __init__(self, proof: str = "paid"):
        self.proof = proof
        self.challenges: list[Challenge] = []

    def __call__(self, challenge: Challenge) -> dict[str, str]:
        self.challenges.append(challenge)
        return {"proof": self.proof}


class AsyncRecordingPay(RecordingPay):
    async def __call__(self, challenge: Challenge) -> PaymentResult:  # type: ignore[override]
        self.challenges.append(challenge)
        return PaymentResult(proof=self.proof)


def failing_pay(challenge: Challenge):
    raise RuntimeError("insufficient funds")


# ── Mock httpx transports ────────────────────────────────────────────────

class HeaderChallengeTransport(httpx.BaseTransport):
    """Returns an L402 WWW-Authenticate challenge until Authorization is 'paid'."""

    def __init__(self):
        self.requests: list[httpx.Request] = []

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("authorization") == "paid":
            return httpx.Response(200, json={"data": "paid content"})
        return httpx.Response(
            402,
            headers={"WWW-Authenticate": 'L402 macaroon="m1", invoice="lnbc1mockinvoice"'},
            json={"error": "Payment Required"},
        )


class AlwaysChallengeTransport(httpx.BaseTransport):
    """402 with a JSON challenge no matter what proof is sent."""

    def __init__(self):
        self.request_count = 0

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        self.request_count += 1
        return httpx.Response(402, json={"invoice": f"lnbc{self.request_count}"})


class PlainText402Transport(httpx.BaseTransport):
    def __init__(self):
        self.request_count = 0

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        self.request_count += 1
        return httpx.Response(402, text="pay me")


class DeeplyNested402Transport(httpx.BaseTransport):
    """402 whose body is valid JSON nested too deep to decode."""

    def __init__(self):
        self.request_count = 0

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        self.request_count += 1
        body = '{"a":' * 50_000 + "1" + "}" * 50_000
        return httpx.Response(402, content=body.encode())


class FreeTransport(httpx.BaseTransport):
    def handle_request(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": "free content"})


class BrokenTransport(httpx.BaseTransport):
    def handle_request(self, request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)


class FailingStream(httpx.SyncByteStream):
    def __iter__(self):
        raise httpx.ReadError("connection reset")
        yield b""  # pragma: no cover


def body_only_transport() -> MockL402Transport:
    # Body is {"invoice": "lnbc1mockinvoice", "meta": {...}} with no hint.
    return MockL402Transport(MockServerOptions(include_proof_header_hint=False))


# ── Tests ────────────────────────────────────────────────────────────────

class TestL402Client:
    def test_body_challenge_uses_default_proof_header(self):
        pay = RecordingPay()
        transport = body_only_transport()
        client = L402Client(pay=pay, transport=transport)

        response = client.get(URL)

        assert response.status_code == 200
        assert response.json() == {"ok": True, "paid": True}
        assert len(pay.challenges) == 1
        assert pay.challenges[0].invoice == "lnbc1mockinvoice"
        assert pay.challenges[0].proof_header_hint is None
        assert transport.request_count == 2
        assert transport.requests[-1].headers["x-l402-proof"] == "paid"

    def test_header_challenge_retries_via_authorization(self):
        pay = RecordingPay()
        transport = HeaderChallengeTransport()
        client = L402Client(pay=pay, transport=transport)

        response = client.get(URL)

        assert response.status_code == 200
        challenge = pay.challenges[0]
        assert challenge.metadata["macaroon"] == "m1"
        assert challenge.proof_header_hint == "authorization"
        assert transport.requests[-1].headers["authorization"] == "paid"
        assert "x-l402-proof" not in transport.requests[-1].headers

    def test_challenge_hint_overrides_configured_header(self):
        pay = RecordingPay()
        transport = MockL402Transport(MockServerOptions(proof_header="x-custom-proof"))
        client = L402Client(pay=pay, proof_header_name="x-other", transport=transport)

        response = client.get(URL)

        assert response.status_code == 200
        assert transport.requests[-1].headers["x-custom-proof"] == "paid"
        assert "x-other" not in transport.requests[-1].headers

    def test_configured_header_used_without_hint(self):
        pay = RecordingPay()
        transport = MockL402Transport(
            MockServerOptions(proof_header="x-other", include_proof_header_hint=False)
        )
        client = L402Client(pay=pay, proof_header_name="X-Other", transport=transport)

        assert client.get(URL).status_code == 200

    def test_free_endpoint_no_payment(self):
        pay = RecordingPay()
        client = L402Client(pay=pay, transport=FreeTransport())

        response = client.get("https://api.example.com/free")

        assert response.status_code == 200
        assert pay.challenges == []

    def test_max_retries_zero_never_pays(self):
        pay = RecordingPay()
        transport = body_only_transport()
        client = L402Client(pay=pay, max_retries=0, transport=transport)

        response = client.get(URL)

        assert response.status_code == 402
        assert pay.challenges == []
        assert transport.request_count == 1

    def test_negative_max_retries_clamped(self):
        pay = RecordingPay()
        client = L402Client(pay=pay, max_retries=-3, transport=body_only_transport())

        assert client.config.max_retries == 0
        assert client.get(URL).status_code == 402
        assert pay.challenges == []

    def test_unparseable_402_passed_through(self):
        pay = RecordingPay()
        transport = PlainText402Transport()
        client = L402Client(pay=pay, transport=transport)

        response = client.get(URL)

        assert response.status_code == 402
        assert response.text == "pay me"
        assert pay.challenges == []
        assert transport.request_count == 1

    def test_deeply_nested_402_body_passed_through(self):
        pay = RecordingPay()
        transport = DeeplyNested402Transport()
        client = L402Client(pay=pay, transport=transport)

        response = client.get(URL)

        assert response.status_code == 402
        assert pay.challenges == []
        assert transport.request_count == 1

    def test_retries_exhausted_returns_last_402(self):
        pay = RecordingPay()
        transport = AlwaysChallengeTransport()
        client = L402Client(pay=pay, max_retries=2, transport=transport)

        response = client.get(URL)

        assert response.status_code == 402
        assert response.json() == {"invoice": "lnbc3"}
        assert [c.invoice for c in pay.challenges] == ["lnbc1", "lnbc2"]
        assert transport.request_count == 3

    def test_payment_failure_propagates_unchanged(self):
        transport = body_only_transport()
        client = L402Client(pay=failing_pay, transport=transport)

        with pytest.raises(RuntimeError, match="insufficient funds"):
            client.get(URL)

        assert transport.request_count == 1
        assert len(client.payment_log.failed()) == 1

    def test_payment_failed_error_propagates(self):
        def pay(challenge):
            raise PaymentFailedError("declined", challenge.invoice)

        client = L402Client(pay=pay, transport=body_only_transport())

        with pytest.raises(PaymentFailedError, match="declined") as exc_info:
            client.get(URL)
        assert exc_info.value.invoice == "lnbc1mockinvoice"

    def test_pay_result_without_proof_fails(self):
        client = L402Client(pay=lambda c: {"preimage": "x"}, transport=body_only_transport())

        with pytest.raises(PaymentFailedError, match="no proof"):
            client.get(URL)

    def test_async_pay_callback_on_sync_client(self):
        pay = AsyncRecordingPay()
        client = L402Client(pay=pay, transport=body_only_transport())

        assert client.get(URL).status_code == 200
        assert len(pay.challenges) == 1

    def test_transport_failure_propagates(self):
        client = L402Client(pay=RecordingPay(), transport=BrokenTransport())

        with pytest.raises(httpx.ConnectError):
            client.get(URL)

    def test_missing_pay_fails_before_io(self):
        transport = body_only_transport()

        with pytest.raises(ConfigurationError, match="pay callback is required"):
            L402Client(transport=transport)
        with pytest.raises(ConfigurationError):
            fetch_with_l402("GET", URL, transport=transport)

        assert transport.request_count == 0

    def test_caller_headers_kept_and_not_mutated(self):
        pay = RecordingPay()
        transport = body_only_transport()
        client = L402Client(pay=pay, transport=transport)
        headers = {"x-client": "1"}

        client.get(URL, headers=headers)

        assert headers == {"x-client": "1"}
        assert all(r.headers["x-client"] == "1" for r in transport.requests)
        assert "x-l402-proof" not in transport.requests[0].headers

    def test_proof_overwrites_existing_header(self):
        transport = body_only_transport()
        client = L402Client(pay=RecordingPay(), transport=transport)

        client.get(URL, headers={"X-L402-Proof": "stale"})

        assert transport.requests[-1].headers.get_list("x-l402-proof") == ["paid"]

    def test_method_and_body_replayed_unchanged(self):
        transport = body_only_transport()
        client = L402Client(pay=RecordingPay(), transport=transport)

        response = client.post(URL, json={"key": "value"})

        assert response.status_code == 200
        first, retry = transport.requests
        assert first.method == retry.method == "POST"
        assert first.url == retry.url
        assert json.loads(retry.content) == {"key": "value"}
        assert first.content == retry.content

    def test_headers_do_not_leak_between_calls(self):
        transport = body_only_transport()
        client = L402Client(pay=RecordingPay(), transport=transport)

        client.get(URL)
        client.get(URL)

        assert "x-l402-proof" not in transport.requests[2].headers

    def test_payment_log_records_success(self):
        client = L402Client(pay=RecordingPay(), transport=body_only_transport())

        client.get(URL)

        record = client.payment_log.records[0]
        assert record.domain == "api.example.com"
        assert record.path == "/paid"
        assert record.invoice == "lnbc1mockinvoice"
        assert record.proof_header == "x-l402-proof"
        assert record.success is True

    def test_shared_payment_log(self):
        log = PaymentLog()
        client = L402Client(pay=RecordingPay(), payment_log=log, transport=body_only_transport())

        client.get(URL)

        assert client.payment_log is log
        assert len(log) == 1

    def test_from_options(self):
        options = L402Options(pay=RecordingPay(), max_retries=0)
        client = L402Client.from_options(options, transport=body_only_transport())

        assert client.config is options
        assert client.get(URL).status_code == 402

    def test_fetch_with_l402(self):
        pay = RecordingPay()
        response = fetch_with_l402("GET", URL, pay, transport=body_only_transport())

        assert response.status_code == 200
        assert len(pay.challenges) == 1


class TestRetryState:
    def test_with_proof_is_copy_on_write(self):
        state = RetryState.initial({"a": "1"})
        nxt = state.with_proof("x-l402-proof", "paid")

        assert "x-l402-proof" not in state.headers
        assert state.attempt == 0
        assert nxt.headers["x-l402-proof"] == "paid"
        assert nxt.headers["a"] == "1"
        assert nxt.attempt == 1

    def test_initial_without_headers(self):
        assert len(RetryState.initial().headers) == 0


class TestReadText:
    def test_read_failure_treated_as_empty(self):
        response = httpx.Response(402, stream=FailingStream())
        assert _read_text(response) == ""

    def test_reads_body(self):
        assert _read_text(httpx.Response(402, text="pay me")) == "pay me"


# ── Async tests ──────────────────────────────────────────────────────────

class AsyncPlainText402Transport(httpx.AsyncBaseTransport):
    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return httpx.Response(402, text="pay me")


class TestAsyncL402Client:
    @pytest.mark.asyncio
    async def test_auto_pays_402_and_retries(self):
        pay = AsyncRecordingPay()
        transport = body_only_transport()

        async with AsyncL402Client(pay=pay, transport=transport) as client:
            response = await client.get(URL)

        assert response.status_code == 200
        assert response.json() == {"ok": True, "paid": True}
        assert len(pay.challenges) == 1
        assert transport.requests[-1].headers["x-l402-proof"] == "paid"

    @pytest.mark.asyncio
    async def test_sync_pay_callback(self):
        pay = RecordingPay()
        transport = MockL402Transport(
            MockServerOptions(challenge_in_header=True, proof_header="authorization")
        )

        async with AsyncL402Client(pay=pay, transport=transport) as client:
            response = await client.get(URL)

        assert response.status_code == 200
        assert pay.challenges[0].macaroon == "mockmacaroon"

    @pytest.mark.asyncio
    async def test_unparseable_402_passed_through(self):
        pay = AsyncRecordingPay()

        async with AsyncL402Client(pay=pay, transport=AsyncPlainText402Transport()) as client:
            response = await client.get(URL)

        assert response.status_code == 402
        assert pay.challenges == []

    @pytest.mark.asyncio
    async def test_payment_failure_propagates(self):
        async def pay(challenge):
            raise PaymentFailedError("user declined", challenge.invoice)

        async with AsyncL402Client(pay=pay, transport=body_only_transport()) as client:
            with pytest.raises(PaymentFailedError, match="user declined"):
                await client.get(URL)
            assert client.payment_log.records[0].success is False

    @pytest.mark.asyncio
    async def test_max_retries_zero(self):
        pay = AsyncRecordingPay()
        transport = body_only_transport()

        async with AsyncL402Client(pay=pay, max_retries=0, transport=transport) as client:
            response = await client.get(URL)

        assert response.status_code == 402
        assert transport.request_count == 1

    @pytest.mark.asyncio
    async def test_afetch_with_l402(self):
        pay = AsyncRecordingPay()
        response = await afetch_with_l402("POST", URL, pay, transport=body_only_transport(), json={"a": 1})

        assert response.status_code == 200
        assert pay.challenges[0].invoice == "lnbc1mockinvoice"

    @pytest.mark.asyncio
    async def test_client_without_context_manager(self):
        client = AsyncL402Client(pay=AsyncRecordingPay(), transport=body_only_transport())
        try:
            response = await client.get(URL)
        finally:
            await client.aclose()

        assert response.status_code == 200
