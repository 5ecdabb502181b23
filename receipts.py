"""
receipts.py - Audit Receipts for Diagnostics Runs

Every simulation, overlap pass and complexity analysis returns a receipt:
a flat dict naming what ran, for which tenant, and a payload hash that lets
a stored result be replayed and checked.

    receipt = {receipt_type, ts, tenant_id, payload_hash, **payload}

Hashes are always dual (SHA256:BLAKE3). Non-finite floats hash as null so
NaN correlations never break strict JSON consumers.
"""

import hashlib
import json
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Union

import blake3

__all__ = [
    "dual_hash",
    "emit_receipt",
    "write_receipt_jsonl",
    "StopRule",
    "merkle",
    "RECEIPT_SCHEMA",
]

# =============================================================================
# CONSTANTS
# =============================================================================

RECEIPT_SCHEMA = {
    "receipt_type": "str",
    "ts": "ISO8601",
    "tenant_id": "str",
    "payload_hash": "str (SHA256:BLAKE3)",
}

EMPTY_MERKLE_SEED = b"empty"


# =============================================================================
# CORE FUNCTION 1: dual_hash
# =============================================================================

def dual_hash(data: Union[bytes, str]) -> str:
    """
    Hash with SHA256 and BLAKE3 side by side.

    Args:
        data: Bytes, or a str encoded as UTF-8

    Returns:
        str: "<sha256 hex>:<blake3 hex>"
    """
    raw = data.encode() if isinstance(data, str) else data
    return f"{hashlib.sha256(raw).hexdigest()}:{blake3.blake3(raw).hexdigest()}"


def _json_safe(value: Any) -> Any:
    """NaN/inf become None; tuples become lists; dict keys become str."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def _canonical(value: Any) -> str:
    return json.dumps(_json_safe(value), sort_keys=True, default=str)


# =============================================================================
# CORE FUNCTION 2: emit_receipt
# =============================================================================

def emit_receipt(receipt_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Receipt for one diagnostics operation.

    Args:
        receipt_type: e.g. 'monte_carlo_simulation', 'overlap_analysis'
        data: Payload; 'tenant_id' falls back to 'default'

    Returns:
        dict: receipt_type, ts, tenant_id, payload_hash, then the payload
    """
    payload = _json_safe(data)
    return {
        "receipt_type": receipt_type,
        "ts": datetime.now(timezone.utc).isoformat(),
        "tenant_id": payload.get("tenant_id", "default"),
        "payload_hash": dual_hash(_canonical(payload)),
        **payload
    }


# =============================================================================
# CORE FUNCTION 3: write_receipt_jsonl
# =============================================================================

def write_receipt_jsonl(receipt: Dict[str, Any], fh) -> None:
    """Write one receipt as a compact JSON line to an open text handle."""
    fh.write(json.dumps(receipt, separators=(",", ":"), default=str) + "\n")


# =============================================================================
# CORE FUNCTION 4: merkle
# =============================================================================

def merkle(items: List[Any]) -> str:
    """
    Merkle root over JSON-serialized items.

    Odd levels duplicate their last hash. An empty list hashes a fixed seed
    so the root is never blank.
    """
    if not items:
        return dual_hash(EMPTY_MERKLE_SEED)
    level = [dual_hash(_canonical(item)) for item in items]
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        level = [dual_hash(left + right) for left, right in zip(level[::2], level[1::2])]
    return level[0]


# =============================================================================
# STOPRULE EXCEPTION
# =============================================================================

class StopRule(Exception):
    """A run-level failure; an anomaly receipt is emitted before raising."""
