from __future__ import annotations

import hashlib
import json
from typing import Any


def canonicalize(value: Any) -> Any:
    # Sort mapping keys recursively so logically equal payloads serialize identically.
    if isinstance(value, dict):
        return {str(key): canonicalize(value[key]) for key in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    return value


def canonical_json(value: Any) -> str:
    # Compact separators and non-ASCII passthrough keep the hash stable across clients.
    return json.dumps(canonicalize(value), separators=(",", ":"), ensure_ascii=False, default=str)


def compute_dedup_key(tenant_id: str, source: str, signal_type: str, data: dict[str, Any]) -> str:
    # Only tenant, source, type and normalized data enter the key; timestamps and adapter hints never do.
    material = {
        "tenant_id": tenant_id,
        "source": source,
        "type": signal_type,
        "payload": data,
    }
    return hashlib.sha256(canonical_json(material).encode("utf-8")).hexdigest()
