"""Tests for the payment log."""

import json

from l402_fetch.payment_log import PaymentLog


class TestPaymentLog:
    def test_record_and_filter(self):
        log = PaymentLog()
        log.record("api.example.com", "/a", "lnbc1", "x-l402-proof")
        log.record("api.example.com", "/b", "lnbc2", "authorization", success=False)
        log.record("other.example.com", "/c", "lnbc3")

        assert len(log) == 3
        assert [r.invoice for r in log.succeeded()] == ["lnbc1", "lnbc3"]
        assert [r.invoice for r in log.failed()] == ["lnbc2"]
        assert log.by_domain() == {"api.example.com": 1, "other.example.com": 1}

    def test_records_is_a_copy(self):
        log = PaymentLog()
        log.record("a", "/", "lnbc1")
        log.records.clear()
        assert len(log) == 1

    def test_to_json(self):
        log = PaymentLog()
        log.record("api.example.com", "/paid", "lnbc1", "authorization")

        data = json.loads(log.to_json())

        assert data[0]["domain"] == "api.example.com"
        assert data[0]["proof_header"] == "authorization"
        assert data[0]["success"] is True
        assert "proof" not in data[0]
