from __future__ import annotations

import sqlalchemy as sa

metadata = sa.MetaData()


pipeline_run_summaries = sa.Table(
    "pipeline_run_summaries",
    metadata,
    sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True, autoincrement=True),
    sa.Column("pipeline_name", sa.String(length=100), nullable=False),
    sa.Column("run_id", sa.String(length=64), nullable=False, unique=True),
    sa.Column("run_env", sa.String(length=32)),
    sa.Column("started_at", sa.DateTime(timezone=True)),
    sa.Column("finished_at", sa.DateTime(timezone=True)),
    sa.Column("total_time_taken", sa.String(length=8)),
    sa.Column("report_date", sa.Date()),
    sa.Column("overall_status", sa.String(length=32)),
    sa.Column("summary_text", sa.Text()),
    sa.Column("phases_json", sa.JSON()),
    sa.Column("metrics_json", sa.JSON()),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
)
