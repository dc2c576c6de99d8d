"""Ordered lookup rules for the field names L402 servers use in the wild.

Each rule is a list of candidate paths and a list of key aliases. Lookup is
path-major: the first path that holds any accepted value under any alias
wins, and within that path the first alias wins. The orders below are relied
on by existing servers and must not be reshuffled.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

Path = tuple[str, ...]

TOP_LEVEL: Path = ()


@dataclass(frozen=True)
class ExtractionRule:
    """Where to look (``paths``) and what to look for (``keys``)."""

    paths: tuple[Path, ...]
    keys: tuple[str, ...]


def resolve_path(root: Any, path: Path) -> Mapping[str, Any] | None:
    """Walk ``path`` through nested mappings. Returns None on any miss."""
    node = root
    for part in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(part)
    return node if isinstance(node, Mapping) else None


def is_string(value: Any) -> bool:
    return isinstance(value, str)


def is_nonblank_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def is_mapping(value: Any) -> bool:
    return isinstance(value, Mapping)


def lookup(
    root: Any,
    rule: ExtractionRule,
    accept: Callable[[Any], bool] = is_nonblank_string,
) -> Any | None:
    """Return the first value matched by ``rule`` that ``accept`` allows."""
    for path in rule.paths:
        node = resolve_path(root, path)
        if node is None:
            continue
        for key in rule.keys:
            if key in node and accept(node[key]):
                return node[key]
    return None


# ── WWW-Authenticate parameters (keys are lowercased before lookup) ──────

HEADER_INVOICE = ExtractionRule(
    paths=(TOP_LEVEL,),
    keys=(
        "invoice",
        "payreq",
        "payment_request",
        "paymentrequest",
        "pr",
        "bolt11",
        "bolt-11",
    ),
)

HEADER_PROOF_HEADER = ExtractionRule(
    paths=(TOP_LEVEL,),
    keys=("proof_header", "proofheader", "proof-header", "header"),
)

HEADER_MACAROON = ExtractionRule(paths=(TOP_LEVEL,), keys=("macaroon",))

# ── JSON bodies ──────────────────────────────────────────────────────────

BODY_PATHS: tuple[Path, ...] = (
    TOP_LEVEL,
    ("l402",),
    ("challenge",),
    ("data",),
    ("details",),
    ("result",),
    ("payment",),
    ("error",),
    ("error", "l402"),
    ("error", "data"),
    ("data", "l402"),
    ("data", "challenge"),
)

BODY_INVOICE = ExtractionRule(
    paths=BODY_PATHS,
    keys=(
        "invoice",
        "payreq",
        "payment_request",
        "paymentRequest",
        "paymentrequest",
        "pr",
        "bolt11",
        "bolt_11",
        "bolt-11",
    ),
)

BODY_PROOF_HEADER = ExtractionRule(
    paths=BODY_PATHS,
    keys=("proofHeader", "proof_header", "proofheader", "proof-header", "header"),
)

BODY_METADATA = ExtractionRule(paths=(TOP_LEVEL, ("l402",)), keys=("meta",))
