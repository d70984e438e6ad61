"""Idempotency keys for external gateway calls.

Keys are deterministic so a retried operation presents the same key to the
gateway and the gateway collapses the retry into the original call.
"""

import hashlib
import json
from typing import Any
from uuid import UUID


def generate_idempotency_key(
    operation: str,
    entity_id: UUID | str,
    params: dict[str, Any] | None = None,
) -> str:
    """Generate a deterministic idempotency key.

    Args:
        operation: Operation name (e.g., "booking_charge", "deposit_authorize")
        entity_id: Primary entity ID
        params: Additional parameters to include in key

    Returns:
        SHA256 hash of operation + entity + params
    """
    key_data = {
        "operation": operation,
        "entity_id": str(entity_id),
        "params": {k: str(v) for k, v in (params or {}).items()},
    }
    key_str = json.dumps(key_data, sort_keys=True)
    return hashlib.sha256(key_str.encode()).hexdigest()
