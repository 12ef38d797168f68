"""Frame parsing for vendors whose streams are read off a raw httpx response.

Two framings are handled:

* ``data: {...}`` server-sent-event lines, optionally ending with ``[DONE]``
* bare newline-delimited JSON objects

End of the byte stream always ends the frame sequence; a sentinel is only
an early stop.
"""

import json
from collections.abc import AsyncIterator
from typing import Any

DONE_SENTINEL = "[DONE]"

# SSE fields other than data carry nothing we use
_IGNORED_FIELDS = ("event:", "id:", "retry:")


def frame_payload(line: str) -> str | None:
    """Return the JSON text carried by one stream line, or None to skip it."""
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if line.startswith("data:"):
        return line[len("data:") :].strip() or None
    if line.startswith(_IGNORED_FIELDS):
        return None
    return line


async def iter_json_frames(lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    """Decode stream lines into JSON objects.

    Raises:
        ValueError: a frame is not a JSON object
    """
    async for line in lines:
        payload = frame_payload(line)
        if payload is None:
            continue
        if payload == DONE_SENTINEL:
            return
        frame = json.loads(payload)
        if not isinstance(frame, dict):
            raise ValueError(f"unexpected stream frame: {payload[:100]}")
        yield frame
