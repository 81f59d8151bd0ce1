from __future__ import annotations

import json
from typing import Any, Dict, Union

from .errors import CorruptSaveError
from .models import SaveMetadata, SavePayload

ENCODING = "utf-8"


def encode_payload(payload: SavePayload) -> bytes:
    """Encode a SavePayload to pretty-printed UTF-8 JSON."""
    data = payload.to_dict()
    return json.dumps(data, ensure_ascii=False, sort_keys=True, indent=2).encode(ENCODING)


def _load_object(raw: Union[bytes, str]) -> Dict[str, Any]:
    try:
        text = raw.decode(ENCODING) if isinstance(raw, (bytes, bytearray)) else raw
        data = json.loads(text)
    except UnicodeDecodeError as e:
        raise CorruptSaveError(f"Invalid UTF-8: {e}") from e
    except json.JSONDecodeError as e:
        raise CorruptSaveError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise CorruptSaveError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def decode_payload(raw: Union[bytes, str]) -> SavePayload:
    """Decode JSON bytes into a SavePayload. Any structural problem raises CorruptSaveError."""
    data = _load_object(raw)
    try:
        return SavePayload.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise CorruptSaveError(f"Malformed save payload: {e}") from e


def encode_metadata(meta: SaveMetadata) -> bytes:
    return json.dumps(meta.to_dict(), ensure_ascii=False, sort_keys=True, indent=2).encode(ENCODING)


def decode_metadata(raw: Union[bytes, str]) -> SaveMetadata:
    data = _load_object(raw)
    try:
        return SaveMetadata.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise CorruptSaveError(f"Malformed save metadata: {e}") from e
