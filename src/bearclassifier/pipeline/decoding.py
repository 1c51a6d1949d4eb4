"""Schema-validated decoders for each stage's response body.

Each decoder takes the raw response bytes and either returns the value the
next stage needs or raises :class:`DecodeError` (body is not JSON / not UTF-8)
or :class:`ProtocolError` (body decoded but has the wrong shape).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter, ValidationError

from bearclassifier.pipeline.outcome import DecodeError, JobHandle, ProtocolError, UploadHandle

logger = logging.getLogger(__name__)

_SSE_LINE_BREAK = re.compile(r"\r\n|\r|\n")

NonEmptyStr = Annotated[str, StringConstraints(strict=True, min_length=1)]


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class SubmitResponse(BaseModel):
    """Body returned by ``POST /call/predict``."""

    event_id: NonEmptyStr


class PredictionEntry(BaseModel):
    """One output of a finished prediction job. Extra fields (confidences) are kept."""

    model_config = ConfigDict(extra="allow")

    label: NonEmptyStr


class FetchResponse(BaseModel):
    """Structured body returned by ``GET /call/predict/{event_id}``."""

    data: list[Any] = Field(min_length=1)


_UPLOAD_ADAPTER: TypeAdapter[list[Any]] = TypeAdapter(Annotated[list[Any], Field(min_length=1)])
_HANDLE_ADAPTER: TypeAdapter[str] = TypeAdapter(NonEmptyStr)
_LABEL_ADAPTER: TypeAdapter[str | PredictionEntry] = TypeAdapter(NonEmptyStr | PredictionEntry)


@dataclass(frozen=True)
class ServerEvent:
    """A single server-sent event from a job result stream."""

    event: str
    data: str


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------


def _describe(exc: ValidationError) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "body"
    return f"{location}: {first['msg']}"


def decode_text(body: bytes) -> str:
    """Decode a response body as UTF-8 text."""
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"Response body is not valid UTF-8: {exc}") from exc


def decode_json(body: bytes) -> Any:
    """Decode a response body as JSON."""
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise DecodeError(f"Response body is not valid JSON: {exc}") from exc


# ---------------------------------------------------------------------------
# Stage decoders
# ---------------------------------------------------------------------------


def decode_upload(body: bytes) -> UploadHandle:
    """Extract the server-side file path from an upload response.

    The body must be a JSON array whose first element is a non-empty string.
    """
    payload = decode_json(body)
    try:
        paths = _UPLOAD_ADAPTER.validate_python(payload)
        return _HANDLE_ADAPTER.validate_python(paths[0])
    except ValidationError as exc:
        raise ProtocolError(f"Unexpected upload response ({_describe(exc)})") from exc


def decode_submit(body: bytes) -> JobHandle:
    """Extract the ``event_id`` from a prediction submit response."""
    payload = decode_json(body)
    try:
        return SubmitResponse.model_validate(payload).event_id
    except ValidationError as exc:
        raise ProtocolError(f"Unexpected predict response ({_describe(exc)})") from exc


def parse_event_stream(text: str) -> list[ServerEvent]:
    """Split a ``text/event-stream`` body into events.

    Lines end only on CRLF, LF or CR. Multi-line ``data:`` fields are joined with
    newlines; comment lines and unknown fields are ignored.
    """
    events: list[ServerEvent] = []
    name = "message"
    data_lines: list[str] = []
    for line in [*_SSE_LINE_BREAK.split(text), ""]:
        if not line:
            if data_lines:
                events.append(ServerEvent(event=name, data="\n".join(data_lines)))
            name = "message"
            data_lines = []
            continue
        if line.startswith(":"):
            continue
        field_name, _, value = line.partition(":")
        value = value.removeprefix(" ")
        if field_name == "event":
            name = value
        elif field_name == "data":
            data_lines.append(value)
    return events


def is_event_stream(text: str) -> bool:
    head = text.lstrip()
    return head.startswith(("event:", "data:"))


def _label_from_output(output: Any) -> str:
    try:
        entry = _LABEL_ADAPTER.validate_python(output)
    except ValidationError as exc:
        raise ProtocolError(f"Prediction output has no label ({_describe(exc)})") from exc
    return entry if isinstance(entry, str) else entry.label


def _decode_stream(text: str) -> str:
    events = parse_event_stream(text)
    for event in events:
        if event.event == "error":
            detail = event.data if event.data and event.data != "null" else "no details"
            raise ProtocolError(f"Prediction job failed: {detail}")

    completed = [event for event in events if event.event == "complete"]
    if not completed:
        raise ProtocolError("Result stream ended without a complete event")

    outputs = decode_json(completed[-1].data.encode("utf-8"))
    if not isinstance(outputs, list) or not outputs:
        raise ProtocolError("Complete event carried no outputs")
    return _label_from_output(outputs[0])


def decode_fetch_structured(body: bytes) -> str:
    """Extract the label from a finished job's result.

    Accepts either a JSON object ``{"data": [{"label": ...}, ...]}`` or an
    event stream whose ``complete`` event carries the outputs array.
    """
    text = decode_text(body)
    if not text.strip():
        raise ProtocolError("No data received for event results")

    if is_event_stream(text):
        logger.debug("Decoding result as event stream")
        return _decode_stream(text)

    payload = decode_json(body)
    try:
        result = FetchResponse.model_validate(payload)
    except ValidationError as exc:
        raise ProtocolError(f"Unexpected result response ({_describe(exc)})") from exc
    return _label_from_output(result.data[0])


def decode_fetch_verbatim(body: bytes) -> str:
    """Return the result body unchanged as text."""
    text = decode_text(body)
    if not text:
        raise ProtocolError("No data received for event results")
    return text
