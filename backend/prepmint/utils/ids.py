"""Record and job identifiers."""

from __future__ import annotations

import itertools
import secrets

from prepmint.utils.time import now_ms

_sequence = itertools.count()


def new_id(prefix: str | None = None) -> str:
    """Time-ordered id: a plain string sort follows creation order.

    12 hex digits of epoch milliseconds, 6 of a per-process sequence, then 8
    random ones. Records created in the same millisecond still tie-break by
    id in insertion order.
    """
    body = f"{now_ms():012x}{next(_sequence) % 0x1000000:06x}{secrets.token_hex(4)}"
    return f"{prefix}_{body}" if prefix else body
