from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, MutableMapping

import sqlalchemy as sa

from order_audit.common.db import ensure_schema, session_scope
from order_audit.common.db_tables import pipeline_run_summaries
from order_audit.common.json_logger import JsonLogger, log_event


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(value: datetime | None) -> str:
    if not value:
        return ""
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _format_duration(seconds: int) -> str:
    seconds = max(0, seconds)
    hh = seconds // 3600
    mm = (seconds % 3600) // 60
    ss = seconds % 60
    return f"{hh:02d}:{mm:02d}:{ss:02d}"


def _normalize_status(raw: str | None) -> str:
    normalized = (raw or "ok").lower()
    if normalized in {"warn", "warning"}:
        return "warning"
    if normalized == "error":
        return "error"
    return "ok"


@dataclass
class RunAggregator:
    """Collects phase counters from log events plus pipeline-provided metrics."""

    pipeline_name: str
    run_id: str
    run_env: str
    started_at: datetime = field(default_factory=_utc_now)
    report_date: date | None = None
    phase_counters: MutableMapping[str, Dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: {"ok": 0, "warning": 0, "error": 0})
    )
    metrics: Dict[str, Any] = field(default_factory=dict)
    totals: Dict[str, int] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)
    issues: deque[str] = field(default_factory=lambda: deque(maxlen=10))
    fatal: str | None = None

    def record_log_event(self, payload: Mapping[str, Any]) -> None:
        phase = payload.get("phase")
        status_raw = payload.get("status")
        if not phase or status_raw == "debug":
            return
        status = _normalize_status(status_raw)
        self.phase_counters[phase][status] += 1
        if status in {"warning", "error"}:
            detail = payload.get("message") or phase
            for unit in ("month", "date", "order_id"):
                if payload.get(unit):
                    detail = f"{detail} ({unit} {payload[unit]})"
                    break
            if detail not in self.issues:
                self.issues.append(detail)

    def add_note(self, note: str) -> None:
        if note not in self.notes:
            self.notes.append(note)

    def set_totals(self, **counts: int) -> None:
        self.totals.update({key: int(value) for key, value in counts.items()})

    def mark_fatal(self, message: str) -> None:
        self.fatal = message
        self.add_note(message)

    def overall_status(self) -> str:
        if self.fatal:
            return "error"
        counters = [dict(counts) for counts in self.phase_counters.values()]
        if any(counts.get("error") for counts in counters):
            return "error"
        if any(counts.get("warning") for counts in counters):
            return "warning"
        return "ok"

    def build_summary_text(self, *, finished_at: datetime) -> str:
        duration = _format_duration(int((finished_at - self.started_at).total_seconds()))
        lines = [
            f"Pipeline: {self.pipeline_name}",
            f"Run ID: {self.run_id}",
            f"Env: {self.run_env}",
            f"Started: {_format_ts(self.started_at)}  Finished: {_format_ts(finished_at)}  Duration: {duration}",
            f"Status: {self.overall_status()}",
            "",
            "Totals:",
        ]
        if self.totals:
            lines.extend(f"- {key}: {value}" for key, value in self.totals.items())
        else:
            lines.append("- None.")
        lines.append("")
        lines.append("Phases:")
        for phase in sorted(self.phase_counters):
            counts = self.phase_counters[phase]
            lines.append(
                f"- {phase}: ok={counts['ok']} warning={counts['warning']} error={counts['error']}"
            )
        if self.notes:
            lines.append("")
            lines.append("Notes:")
            lines.extend(f"- {note}" for note in self.notes)
        lines.append("")
        lines.append("Issues:")
        if self.issues:
            lines.extend(f"- {issue}" for issue in self.issues)
        else:
            lines.append("- None.")
        return "\n".join(lines)

    def build_record(self, *, finished_at: datetime) -> Dict[str, Any]:
        return {
            "pipeline_name": self.pipeline_name,
            "run_id": self.run_id,
            "run_env": self.run_env,
            "started_at": self.started_at,
            "finished_at": finished_at,
            "total_time_taken": _format_duration(int((finished_at - self.started_at).total_seconds())),
            "report_date": self.report_date,
            "overall_status": self.overall_status(),
            "summary_text": self.build_summary_text(finished_at=finished_at),
            "phases_json": {phase: dict(counts) for phase, counts in self.phase_counters.items()},
            "metrics_json": {"totals": dict(self.totals), **self.metrics, "issues": list(self.issues)},
        }


async def insert_run_summary(database_url: str, record: Mapping[str, Any]) -> None:
    async with session_scope(database_url) as session:
        await session.execute(sa.insert(pipeline_run_summaries).values(**record))
        await session.commit()


async def update_run_summary(database_url: str, run_id: str, record: Mapping[str, Any]) -> None:
    async with session_scope(database_url) as session:
        await session.execute(
            sa.update(pipeline_run_summaries).where(pipeline_run_summaries.c.run_id == run_id).values(**record)
        )
        await session.commit()


async def fetch_summary_for_run(database_url: str, run_id: str) -> Mapping[str, Any] | None:
    async with session_scope(database_url) as session:
        result = await session.execute(
            sa.select(pipeline_run_summaries).where(pipeline_run_summaries.c.run_id == run_id).limit(1)
        )
        return result.mappings().first()


async def persist_summary(
    *,
    aggregator: RunAggregator,
    logger: JsonLogger,
    database_url: str | None,
    finished_at: datetime | None = None,
) -> bool:
    """Log the final summary and, when a database is configured, upsert it."""

    finished = finished_at or _utc_now()
    record = aggregator.build_record(finished_at=finished)
    log_event(
        logger=logger,
        phase="run_summary",
        message="Run finished",
        overall_status=record["overall_status"],
        totals=record["metrics_json"]["totals"],
        duration=record["total_time_taken"],
    )
    if not database_url:
        log_event(
            logger=logger,
            phase="run_summary",
            status="warn",
            message="Skipping run summary persistence because database_url is missing",
            run_id=aggregator.run_id,
        )
        return False

    try:
        await ensure_schema(database_url)
        existing = await fetch_summary_for_run(database_url, aggregator.run_id)
        if existing:
            await update_run_summary(database_url, aggregator.run_id, record)
            action = "updated"
        else:
            await insert_run_summary(database_url, record)
            action = "inserted"
        log_event(
            logger=logger,
            phase="run_summary",
            message=f"Run summary {action}",
            run_id=aggregator.run_id,
            overall_status=record["overall_status"],
        )
        return True
    except Exception as exc:
        log_event(
            logger=logger,
            phase="run_summary",
            status="error",
            message="Failed to persist run summary",
            run_id=aggregator.run_id,
            error=str(exc),
        )
        return False
