"""
Append-only NDJSON record streams for the RPC parity monitor.

Four parallel streams live next to each other, derived from one data file path:
- `<data_file>`                 samples
- `<stem>-mismatches.ndjson`    mismatch records
- `<stem>-recoveries.ndjson`    recovery records
- `<stem>-errors.ndjson`        backend error records

Each record is one JSON object on its own line, written with a single `write`
call on a file opened in append mode, so concurrent writers (the sampler loop
and detached re-check tasks) never interleave within a line. Reads are
tolerant: a malformed line is skipped and reported; it never aborts the read.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generic, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from rpc_parity.domain.models import ErrorRecord, MismatchRecord, RecoveryRecord, Sample
from rpc_parity.utils.logging import get_logger

log = get_logger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)
AnyRecord = Union[Sample, MismatchRecord, RecoveryRecord, ErrorRecord]


@dataclass(frozen=True)
class MalformedLine:
    line_number: int
    reason: str


@dataclass
class StreamReadResult(Generic[RecordT]):
    """
    Parsed records plus everything that could not be parsed.

    `io_error` is set when the file exists but could not be read; malformed
    lines are reported separately in `malformed`.
    """

    path: Path
    records: List[RecordT] = field(default_factory=list)
    malformed: List[MalformedLine] = field(default_factory=list)
    io_error: Optional[str] = None


def stream_paths(data_file: Union[Path, str]) -> dict[str, Path]:
    """Derive the four stream paths from the samples file path."""
    data_path = Path(data_file)
    name = data_path.name
    stem = name[: -len(".ndjson")] if name.endswith(".ndjson") else name
    parent = data_path.parent
    return {
        "sample": data_path,
        "mismatch": parent / f"{stem}-mismatches.ndjson",
        "recovery": parent / f"{stem}-recoveries.ndjson",
        "error": parent / f"{stem}-errors.ndjson",
    }


def read_stream(path: Path, model: Type[RecordT]) -> StreamReadResult[RecordT]:
    """
    Parse an NDJSON stream into `model` instances.

    A missing file reads as an empty stream.
    """
    result: StreamReadResult[RecordT] = StreamReadResult(path=path)
    if not path.exists():
        return result
    try:
        raw = path.read_bytes()
    except OSError as exc:
        result.io_error = f"{type(exc).__name__}: {exc}"
        log.warning("Failed to read record stream", extra={"path": str(path), "error": str(exc)})
        return result

    # Lines are decoded one by one; a torn or corrupt line only loses itself.
    for line_number, raw_line in enumerate(raw.splitlines(), start=1):
        try:
            line = raw_line.decode("utf-8")
        except UnicodeDecodeError as exc:
            result.malformed.append(MalformedLine(line_number=line_number, reason=exc.reason))
            continue
        if not line.strip():
            continue
        try:
            result.records.append(model.model_validate_json(line))
        except ValidationError as exc:
            result.malformed.append(
                MalformedLine(line_number=line_number, reason=exc.errors()[0]["msg"])
            )
    if result.malformed:
        log.warning(
            "Skipped malformed records",
            extra={"path": str(path), "malformed": len(result.malformed)},
        )
    return result


class RecordStore:
    """
    Writer/reader for the four record streams.

    Parameters
    ----------
    data_file : Path | str
        Samples stream path; the other streams are derived from it.
    """

    def __init__(self, data_file: Union[Path, str]) -> None:
        self.paths = stream_paths(data_file)
        self._lock = threading.Lock()
        self._parent_ready = False

    def append(self, record: AnyRecord) -> None:
        """
        Append one record to its stream.

        Writes are synchronous and run on the caller's thread: each is a single
        short line on a local file, at most a handful per sampler iteration.
        """
        path = self.paths[record.record_type]
        line = record.model_dump_json() + "\n"
        with self._lock:
            if not self._parent_ready:
                path.parent.mkdir(parents=True, exist_ok=True)
                self._parent_ready = True
            with path.open("a", encoding="utf-8") as f:
                f.write(line)

    def read_samples(self) -> StreamReadResult[Sample]:
        return read_stream(self.paths["sample"], Sample)

    def read_mismatches(self) -> StreamReadResult[MismatchRecord]:
        return read_stream(self.paths["mismatch"], MismatchRecord)

    def read_recoveries(self) -> StreamReadResult[RecoveryRecord]:
        return read_stream(self.paths["recovery"], RecoveryRecord)

    def read_errors(self) -> StreamReadResult[ErrorRecord]:
        return read_stream(self.paths["error"], ErrorRecord)


__all__ = [
    "AnyRecord",
    "MalformedLine",
    "RecordStore",
    "StreamReadResult",
    "read_stream",
    "stream_paths",
]
