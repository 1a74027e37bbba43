from __future__ import annotations

from pathlib import Path

import msgspec
import pytest

from cobalt.trace import (
    TRACE_VERSION,
    SpawnRecord,
    SpawnTrace,
    TraceCodecError,
    decode_trace,
    dump_trace_file,
    encode_trace,
    load_trace_file,
)


def _trace() -> SpawnTrace:
    return SpawnTrace(
        stage=3,
        seed=9,
        records=[
            SpawnRecord(
                time_ms=100.0,
                archetype="D",
                original="D",
                phase="PRESSURE",
                pattern="NONE",
                side="TOP",
                x=412.5,
                y=-50.0,
                group_id=1,
                handle=0,
            ),
            SpawnRecord(
                time_ms=600.0,
                archetype="A",
                original="D",
                phase="PRESSURE",
                pattern="NONE",
                side=None,
                x=-50.0,
                y=130.25,
                depth=1,
                group_id=1,
                handle=1,
            ),
        ],
    )


def test_trace_file_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "trace.json"
    dump_trace_file(path, _trace())
    loaded = load_trace_file(path)
    assert loaded == _trace()
    assert loaded.version == TRACE_VERSION
    assert loaded.records[1].side is None


def test_encoding_is_stable() -> None:
    assert encode_trace(_trace()) == encode_trace(_trace())


def test_decode_rejects_garbage() -> None:
    with pytest.raises(TraceCodecError, match="invalid spawn trace"):
        decode_trace(b"{not json")
    with pytest.raises(TraceCodecError):
        decode_trace(b'{"stage": 1}')


def test_decode_rejects_other_versions() -> None:
    blob = msgspec.json.encode(SpawnTrace(stage=1, seed=0, version=TRACE_VERSION + 1))
    with pytest.raises(TraceCodecError, match="unsupported trace version"):
        decode_trace(blob)
