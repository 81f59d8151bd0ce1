from __future__ import annotations

import base64
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Optional

from ..persistence.models import SavePayload

CHECKSUM_LENGTH = 16
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def creation_ticks(value: Optional[datetime]) -> int:
    """Whole microseconds since the Unix epoch, exact for any aware datetime."""
    if value is None:
        return 0
    return (value - _EPOCH) // timedelta(microseconds=1)


def canonical_string(payload: SavePayload) -> str:
    """The subset of fields the checksum covers.

    Collections contribute only their sizes, so reordering them leaves the checksum alone.
    """
    state = payload.game_state
    parts = [
        payload.save_name,
        payload.save_version,
        str(creation_ticks(payload.creation_date)),
        repr(float(state.current_credits if state else 0.0)),
        repr(float(state.total_play_time if state else 0.0)),
        str(int(state.total_contracts if state else 0)),
        str(len(payload.vehicle_instances)),
        str(len(payload.contract_instances)),
        str(len(payload.city_instances)),
    ]
    return "|".join(parts)


def compute_checksum(payload: SavePayload) -> str:
    digest = hashlib.sha256(canonical_string(payload).encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")[:CHECKSUM_LENGTH]
