from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from .results import FileRecord
from .store import BatchStats


@dataclass(frozen=True)
class FileReport:
    name: str
    status: str
    output_name: Optional[str]
    mime_type: Optional[str]
    src_bytes: int
    out_bytes: Optional[int]
    saved_bytes: int
    saved_percent: float
    error: Optional[str]


@dataclass(frozen=True)
class BatchReport:
    created_utc: str
    summary: dict
    files: List[FileReport]


def build_report(records: Iterable[FileRecord], stats: BatchStats) -> BatchReport:
    created_utc = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    files: List[FileReport] = []
    for r in records:
        files.append(
            FileReport(
                name=r.original.name,
                status=r.status.value,
                output_name=r.output_name,
                mime_type=r.result.mime_type if r.result else None,
                src_bytes=r.original.size,
                out_bytes=r.result.size if r.result else None,
                saved_bytes=r.saved_bytes,
                saved_percent=round(r.saved_percent, 2),
                error=r.error,
            )
        )

    summary_dict = {
        "total_count": stats.total_count,
        "done_count": stats.done_count,
        "error_count": stats.error_count,
        "total_src_bytes": stats.total_src_bytes,
        "total_out_bytes": stats.total_out_bytes,
        "bytes_saved": stats.bytes_saved,
        "saved_percent": round(stats.saved_percent, 2),
    }

    return BatchReport(created_utc=created_utc, summary=summary_dict, files=files)


def save_report_json(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        json.dump(asdict(report), f, indent=2, ensure_ascii=False)


def save_report_csv(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fieldnames = list(FileReport.__dataclass_fields__)
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in report.files:
            writer.writerow(asdict(row))
