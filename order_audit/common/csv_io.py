"""CSV wire format for day partitions and reports.

UTF-8, comma-delimited, RFC4180-style quoting: a field is quoted only when it
contains a comma, a quote or a line break, and embedded quotes are doubled.
"""
from __future__ import annotations

import csv
import io
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence

_WS_RE = re.compile(r"\s+")


def union_headers(rows: Iterable[Mapping[str, Any]], preferred: Sequence[str] = ()) -> List[str]:
    """Union of the columns seen across ``rows`` in first-seen order."""

    headers: List[str] = []
    seen: set[str] = set()
    for name in preferred:
        if name not in seen:
            seen.add(name)
            headers.append(name)
    for row in rows:
        for name in row.keys():
            if name not in seen:
                seen.add(name)
                headers.append(name)
    return headers


def _cell(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def render_csv(rows: Sequence[Mapping[str, Any]], headers: Sequence[str] | None = None) -> str:
    columns = list(headers) if headers is not None else union_headers(rows)
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=",", quotechar='"', quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([_cell(row.get(name)) for name in columns])
    return buffer.getvalue()


def write_csv_rows(
    path: Path,
    rows: Sequence[Mapping[str, Any]],
    headers: Sequence[str] | None = None,
    *,
    atomic: bool = True,
) -> Path:
    """Write ``rows`` to ``path``, creating parent directories as needed.

    With ``atomic`` the content lands in a temporary sibling first and is moved
    into place with ``os.replace``.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    payload = render_csv(rows, headers)
    target = path.with_name(f".{path.name}.tmp") if atomic else path
    with open(target, "w", encoding="utf-8", newline="") as handle:
        handle.write(payload)
        handle.flush()
        os.fsync(handle.fileno())
    if atomic:
        os.replace(target, path)
    return path


def read_csv_rows(path: Path) -> List[Dict[str, str]]:
    """Read a CSV file into dictionaries keyed by stripped header names."""

    with open(path, "r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.reader(handle)
        try:
            header = next(reader)
        except StopIteration:
            return []
        names = [(name or "").strip() for name in header]
        rows: List[Dict[str, str]] = []
        for raw in reader:
            if not raw or (len(raw) == 1 and raw[0] == ""):
                continue
            rows.append({name: (raw[idx] if idx < len(raw) else "") for idx, name in enumerate(names)})
        return rows


def _norm_header(value: str) -> str:
    return _WS_RE.sub(" ", (value or "").lower()).strip()


@dataclass
class HeaderIndex:
    """Tolerant column lookup: exact (case/space-insensitive) name first, then substring."""

    headers: List[str]

    @classmethod
    def from_rows(cls, rows: Sequence[Mapping[str, Any]]) -> "HeaderIndex":
        return cls(headers=list(rows[0].keys()) if rows else [])

    def pick(self, *names: str) -> str | None:
        normalized = {_norm_header(header): header for header in self.headers}
        for name in names:
            hit = normalized.get(_norm_header(name))
            if hit is not None:
                return hit
        for key, header in normalized.items():
            for name in names:
                if _norm_header(name) in key:
                    return header
        return None


def norm_text(value: Any) -> str:
    """Collapse whitespace runs and trim."""

    if value is None:
        return ""
    return _WS_RE.sub(" ", str(value)).strip()
