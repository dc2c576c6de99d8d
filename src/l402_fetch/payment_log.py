"""Payment history for L402 pay-and-retry cycles."""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field


@dataclass
class PaymentRecord:
    """A single pay callback invocation. The proof itself is never stored."""

    domain: str
    path: str
    invoice: str
    proof_header: str | None
    timestamp: float = field(default_factory=time.time)
    success: bool = True


class PaymentLog:
    """Records every challenge the client tried to pay."""

    def __init__(self) -> None:
        self._records: list[PaymentRecord] = []

    def record(
        self,
        domain: str,
        path: str,
        invoice: str,
        proof_header: str | None = None,
        success: bool = True,
    ) -> PaymentRecord:
        """Record a payment attempt."""
        entry = PaymentRecord(
            domain=domain,
            path=path,
            invoice=invoice,
            proof_header=proof_header,
            success=success,
        )
        self._records.append(entry)
        return entry

    @property
    def records(self) -> list[PaymentRecord]:
        return list(self._records)

    def succeeded(self) -> list[PaymentRecord]:
        return [r for r in self._records if r.success]

    def failed(self) -> list[PaymentRecord]:
        return [r for r in self._records if not r.success]

    def by_domain(self) -> dict[str, int]:
        """Number of successful payments per domain."""
        totals: dict[str, int] = {}
        for r in self._records:
            if r.success:
                totals[r.domain] = totals.get(r.domain, 0) + 1
        return totals

    def to_json(self) -> str:
        """Serialize all records to JSON."""
        return json.dumps([asdict(r) for r in self._records], indent=2)

    def __len__(self) -> int:
        return len(self._records)
