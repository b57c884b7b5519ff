"""Decoding of inbound realtime frames."""

from __future__ import annotations

import json
import re
import zlib
from dataclasses import dataclass
from typing import Any

_THREAD_PATH = re.compile(r"^/direct_v2/(?:inbox/)?threads/(\d+)")


@dataclass(frozen=True, slots=True)
class DecodedFrame:
    """Topic and payload recovered from a raw frame."""

    topic: str | None
    payload: Any


def _try_json(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        try:
            value = value.decode("utf-8")
        except UnicodeDecodeError:
            return value
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def decode_frame(data: bytes, topic: str | None = None) -> DecodedFrame:
    """Inflate (when compressed) and JSON-decode (when possible) a frame.

    ``topic`` comes from the transport; plain WebSocket frames have none.
    """
    try:
        data = zlib.decompress(data)
    except zlib.error:
        pass
    return DecodedFrame(topic=topic, payload=_try_json(data))


def thread_id_from_path(path: str) -> str | None:
    """Extract the thread id from a ``/direct_v2/...threads/<id>`` path."""
    match = _THREAD_PATH.match(path)
    return match.group(1) if match else None


def expand_message_sync(payload: Any) -> list[dict[str, Any]]:
    """Flatten a message-sync batch into individual items.

    Each item has ``kind`` ("message", "thread_update" or "iris"), plus
    ``path``, ``op``, ``thread_id`` and the decoded ``value`` where present.
    """
    batches = payload if isinstance(payload, list) else [payload]
    items: list[dict[str, Any]] = []
    for batch in batches:
        if not isinstance(batch, dict):
            continue
        operations = batch.get("data")
        meta = {k: v for k, v in batch.items() if k != "data"}
        if not operations:
            items.append({"kind": "iris", **meta})
            continue
        for operation in operations:
            path = operation.get("path")
            if not path:
                items.append({"kind": "iris", **meta, **operation})
                continue
            value = _try_json(operation.get("value"))
            is_message = path.startswith("/direct_v2/threads") and value is not None
            items.append(
                {
                    **meta,
                    "kind": "message" if is_message else "thread_update",
                    "path": path,
                    "op": operation.get("op"),
                    "thread_id": thread_id_from_path(path),
                    "value": value,
                }
            )
    return items
