from __future__ import annotations

from pathlib import Path

import msgspec

__all__ = [
    "SpawnRecord",
    "SpawnTrace",
    "TRACE_VERSION",
    "TraceCodecError",
    "decode_trace",
    "dump_trace_file",
    "encode_trace",
    "load_trace_file",
]

TRACE_VERSION = 1


class TraceCodecError(ValueError):
    pass


class SpawnRecord(msgspec.Struct, forbid_unknown_fields=True):
    time_ms: float
    archetype: str
    original: str
    phase: str
    pattern: str
    side: str | None
    x: float
    y: float
    depth: int = 0
    group_id: int = 0
    handle: int = -1
    partner: int = -1


class SpawnTrace(msgspec.Struct, forbid_unknown_fields=True):
    stage: int
    seed: int
    version: int = TRACE_VERSION
    records: list[SpawnRecord] = msgspec.field(default_factory=list)


_TRACE_DECODER = msgspec.json.Decoder(type=SpawnTrace)


def encode_trace(trace: SpawnTrace) -> bytes:
    """Stable JSON bytes; identical traces encode identically."""
    return msgspec.json.encode(trace)


def decode_trace(blob: bytes) -> SpawnTrace:
    try:
        trace = _TRACE_DECODER.decode(blob)
    except (msgspec.ValidationError, msgspec.DecodeError) as exc:
        raise TraceCodecError(f"invalid spawn trace: {exc}") from exc
    if trace.version != TRACE_VERSION:
        raise TraceCodecError(f"unsupported trace version: {trace.version}")
    return trace


def dump_trace_file(path: Path, trace: SpawnTrace) -> None:
    path = Path(path)
    path.write_bytes(encode_trace(trace))


def load_trace_file(path: Path) -> SpawnTrace:
    path = Path(path)
    return decode_trace(path.read_bytes())
