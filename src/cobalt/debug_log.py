from __future__ import annotations

import datetime as dt
import os
from pathlib import Path
from threading import Lock


_LOG_LOCK = Lock()
_LOG_PATH: Path | None = None


def _format_value(value: object) -> str:
    text = str(value)
    return text.replace("\n", "\\n")


def _format_fields(fields: dict[str, object]) -> str:
    parts: list[str] = []
    for key in sorted(fields):
        parts.append(f"{key}={_format_value(fields[key])}")
    return " ".join(parts)


def director_log_path() -> Path | None:
    with _LOG_LOCK:
        return _LOG_PATH


def init_director_log(
    *,
    base_dir: Path,
    label: str,
    stage: int,
    seed: int,
) -> Path:
    name = str(label).strip().lower() or "run"
    timestamp = dt.datetime.now(dt.timezone.utc).strftime("%Y%m%dT%H%M%S.%fZ")
    path = base_dir / "logs" / "director" / f"director-{name}-pid{os.getpid()}-{timestamp}.log"
    path.parent.mkdir(parents=True, exist_ok=True)

    with _LOG_LOCK:
        global _LOG_PATH
        _LOG_PATH = path

    director_log(
        "init",
        label=name,
        stage=int(stage),
        seed=int(seed),
        pid=int(os.getpid()),
    )
    return path


def director_log(event: str, **fields: object) -> None:
    timestamp = dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds")
    payload = _format_fields(fields)
    line = f"{timestamp} event={str(event).strip()}"
    if payload:
        line += f" {payload}"
    line += "\n"

    with _LOG_LOCK:
        path = _LOG_PATH
        if path is None:
            return
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line)


def close_director_log() -> None:
    with _LOG_LOCK:
        global _LOG_PATH
        _LOG_PATH = None


__all__ = [
    "close_director_log",
    "director_log",
    "director_log_path",
    "init_director_log",
]
