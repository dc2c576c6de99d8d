"""L402 HTTP client: pays 402 challenges through a callback and retries.

Drop-in replacement for httpx request calls. On HTTP 402 the challenge is
parsed, handed to the ``pay`` callback, and the request is replayed with the
returned proof attached to the hinted (or configured) header.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import inspect
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from l402_fetch.challenge import Challenge, parse_challenge
from l402_fetch.exceptions import PaymentFailedError
from l402_fetch.options import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_PROOF_HEADER,
    L402Options,
    PayCallback,
    PaymentResult,
)
from l402_fetch.payment_log import PaymentLog

logger = logging.getLogger(__name__)

PAYMENT_REQUIRED = 402

_BODY_READ_ERRORS = (httpx.HTTPError, httpx.StreamError, UnicodeDecodeError, LookupError)


@dataclass(frozen=True)
class RetryState:
    """Per-request working state. Each retry produces a new state."""

    headers: httpx.Headers
    attempt: int = 0

    @classmethod
    def initial(cls, headers: Any = None) -> RetryState:
        return cls(headers=httpx.Headers(headers))

    def with_proof(self, header_name: str, proof: str) -> RetryState:
        """Copy the headers, set ``header_name`` to ``proof``, count the attempt."""
        headers = self.headers.copy()
        headers[header_name] = proof
        return RetryState(headers=headers, attempt=self.attempt + 1)


def _proof_from_result(result: Any, invoice: str) -> str:
    if isinstance(result, PaymentResult):
        proof = result.proof
    elif isinstance(result, Mapping):
        proof = result.get("proof")
    else:
        proof = getattr(result, "proof", None)
    if not isinstance(proof, str):
        raise PaymentFailedError("pay callback returned no proof", invoice)
    return proof


async def _await(awaitable: Any) -> Any:
    return await awaitable


def _resolve_sync(result: Any) -> Any:
    """Drive an awaitable pay result to completion from synchronous code."""
    if not inspect.isawaitable(result):
        return result

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        # Already inside an event loop, so run the coroutine on its own thread
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, _await(result)).result()
    return asyncio.run(_await(result))


def _read_text(response: httpx.Response) -> str:
    try:
        response.read()
        return response.text
    except _BODY_READ_ERRORS as e:
        logger.warning(f"Could not read 402 response body, treating as empty: {e}")
        return ""


async def _aread_text(response: httpx.Response) -> str:
    try:
        await response.aread()
        return response.text
    except _BODY_READ_ERRORS as e:
        logger.warning(f"Could not read 402 response body, treating as empty: {e}")
        return ""


class _L402ClientBase:
    def __init__(
        self,
        pay: PayCallback | None = None,
        proof_header_name: str = DEFAULT_PROOF_HEADER,
        max_retries: int = DEFAULT_MAX_RETRIES,
        *,
        options: L402Options | None = None,
        payment_log: PaymentLog | None = None,
        **httpx_kwargs: Any,
    ):
        """
        Args:
            pay: Callback receiving a Challenge and returning its proof, as a
                PaymentResult or ``{"proof": ...}``. May be async.
            proof_header_name: Header for the proof when the challenge has no
                hint. Defaults to ``x-l402-proof``.
            max_retries: Pay-and-retry cycles per request. Defaults to 1.
            options: Prebuilt options; overrides the three arguments above.
            payment_log: Where pay attempts are recorded. Defaults to a new
                PaymentLog.
            **httpx_kwargs: Additional kwargs passed to the httpx client.

        Raises:
            ConfigurationError: If no pay callback is given.
        """
        self.config = options or L402Options(
            pay=pay, proof_header_name=proof_header_name, max_retries=max_retries
        )
        self.payment_log = payment_log if payment_log is not None else PaymentLog()
        self._httpx_kwargs = httpx_kwargs

    @classmethod
    def from_options(cls, options: L402Options, **kwargs: Any):
        return cls(options=options, **kwargs)

    def _proof_header_for(self, challenge: Challenge) -> str:
        return challenge.proof_header_hint or self.config.proof_header_name

    def _should_pay(self, response: httpx.Response, state: RetryState) -> bool:
        if response.status_code != PAYMENT_REQUIRED:
            return False
        if state.attempt >= self.config.max_retries:
            logger.debug(
                f"Still 402 after {state.attempt} paid retries, returning response"
            )
            return False
        return True

    def _record(
        self, url: httpx.URL, challenge: Challenge, header_name: str, success: bool
    ) -> None:
        self.payment_log.record(
            domain=url.host,
            path=url.path,
            invoice=challenge.invoice,
            proof_header=header_name,
            success=success,
        )


class L402Client(_L402ClientBase):
    """Synchronous HTTP client with automatic L402 payment handling.

    Usage:
        client = L402Client(pay=my_pay)
        response = client.get("https://api.example.com/paid-resource")
        # If 402 is returned, my_pay is called and the request is retried.
    """

    def _pay(self, url: httpx.URL, challenge: Challenge) -> str:
        header_name = self._proof_header_for(challenge)
        logger.info(
            f"Paying L402 challenge for {url.host}{url.path} "
            f"(invoice {challenge.invoice[:16]}..., proof via {header_name})"
        )
        try:
            proof = _proof_from_result(
                _resolve_sync(self.config.pay(challenge)), challenge.invoice
            )
        except Exception:
            self._record(url, challenge, header_name, success=False)
            raise
        self._record(url, challenge, header_name, success=True)
        return proof

    def request(self, method: str, url: str | httpx.URL, **kwargs: Any) -> httpx.Response:
        """Make an HTTP request, paying L402 challenges up to max_retries times."""
        state = RetryState.initial(kwargs.pop("headers", None))
        target = httpx.URL(url)

        with httpx.Client(**self._httpx_kwargs) as client:
            while True:
                response = client.request(
                    method, url, headers=state.headers.copy(), **kwargs
                )
                if not self._should_pay(response, state):
                    return response

                challenge = parse_challenge(
                    response.headers, response.status_code, _read_text(response)
                )
                if challenge is None:
                    return response  # 402 but not L402, returned as-is

                proof = self._pay(target, challenge)
                state = state.with_proof(self._proof_header_for(challenge), proof)

    def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("PUT", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("DELETE", url, **kwargs)

    def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("PATCH", url, **kwargs)

    def head(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("HEAD", url, **kwargs)

    def options(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("OPTIONS", url, **kwargs)


class AsyncL402Client(_L402ClientBase):
    """Async HTTP client with automatic L402 payment handling.

    Usage:
        async with AsyncL402Client(pay=my_pay) as client:
            response = await client.get("https://api.example.com/paid-resource")
    """

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> AsyncL402Client:
        self._client = httpx.AsyncClient(**self._httpx_kwargs)
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(**self._httpx_kwargs)
        return self._client

    async def _pay(self, url: httpx.URL, challenge: Challenge) -> str:
        header_name = self._proof_header_for(challenge)
        logger.info(
            f"Paying L402 challenge for {url.host}{url.path} "
            f"(invoice {challenge.invoice[:16]}..., proof via {header_name})"
        )
        try:
            result = self.config.pay(challenge)
            if inspect.isawaitable(result):
                result = await result
            proof = _proof_from_result(result, challenge.invoice)
        except Exception:
            self._record(url, challenge, header_name, success=False)
            raise
        self._record(url, challenge, header_name, success=True)
        return proof

    async def request(
        self, method: str, url: str | httpx.URL, **kwargs: Any
    ) -> httpx.Response:
        """Make an async HTTP request, paying L402 challenges up to max_retries times."""
        state = RetryState.initial(kwargs.pop("headers", None))
        target = httpx.URL(url)
        client = self._ensure_client()

        while True:
            response = await client.request(
                method, url, headers=state.headers.copy(), **kwargs
            )
            if not self._should_pay(response, state):
                return response

            challenge = parse_challenge(
                response.headers, response.status_code, await _aread_text(response)
            )
            if challenge is None:
                return response

            proof = await self._pay(target, challenge)
            state = state.with_proof(self._proof_header_for(challenge), proof)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def head(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("HEAD", url, **kwargs)

    async def options(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("OPTIONS", url, **kwargs)

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


def fetch_with_l402(
    method: str,
    url: str | httpx.URL,
    pay: PayCallback | None = None,
    *,
    proof_header_name: str = DEFAULT_PROOF_HEADER,
    max_retries: int = DEFAULT_MAX_RETRIES,
    transport: httpx.BaseTransport | None = None,
    **kwargs: Any,
) -> httpx.Response:
    """One-shot request with automatic L402 payment.

    ``kwargs`` go to the request (``headers``, ``json``, ``content``...).
    """
    client = L402Client(
        pay, proof_header_name, max_retries, **_transport_kwargs(transport)
    )
    return client.request(method, url, **kwargs)


async def afetch_with_l402(
    method: str,
    url: str | httpx.URL,
    pay: PayCallback | None = None,
    *,
    proof_header_name: str = DEFAULT_PROOF_HEADER,
    max_retries: int = DEFAULT_MAX_RETRIES,
    transport: httpx.AsyncBaseTransport | None = None,
    **kwargs: Any,
) -> httpx.Response:
    """Async one-shot request with automatic L402 payment."""
    async with AsyncL402Client(
        pay, proof_header_name, max_retries, **_transport_kwargs(transport)
    ) as client:
        return await client.request(method, url, **kwargs)


def _transport_kwargs(transport: Any) -> dict[str, Any]:
    return {"transport": transport} if transport is not None else {}
