from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "3f2a9c7d41b0"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = "incremental"
PIPELINE_FK = f"{SCHEMA}.pipelines.pipeline_name"
DROP_TRIGGER = "incremental_source_drop_trigger"


def upgrade() -> None:
    # 1) schema + extension (для gen_random_uuid())
    op.execute(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA};")
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    # 2) pipelines
    op.create_table(
        "pipelines",
        sa.Column("pipeline_name", sa.Text(), primary_key=True),
        sa.Column("pipeline_type", sa.Text(), nullable=False),
        sa.Column("owner_id", sa.Text(), nullable=False),
        sa.Column("source_relation", sa.Text(), nullable=True),
        sa.Column("source_oid", postgresql.OID(), nullable=True),
        sa.Column("command", sa.Text(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("pipeline_type IN ('s', 't', 'f')", name="pipelines_type_check"),
        schema=SCHEMA,
    )

    # 3) sequence_pipelines
    op.create_table(
        "sequence_pipelines",
        sa.Column(
            "pipeline_name",
            sa.Text(),
            sa.ForeignKey(PIPELINE_FK, ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
        sa.Column("sequence_name", sa.Text(), nullable=False),
        sa.Column("sequence_oid", postgresql.OID(), nullable=True),
        sa.Column(
            "last_processed_sequence_number",
            sa.BigInteger(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        schema=SCHEMA,
    )

    # 4) time_interval_pipelines
    op.create_table(
        "time_interval_pipelines",
        sa.Column(
            "pipeline_name",
            sa.Text(),
            sa.ForeignKey(PIPELINE_FK, ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
        sa.Column("time_interval", sa.Interval(), nullable=False),
        sa.Column("batched", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("start_time", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("min_delay", sa.Interval(), nullable=False),
        sa.Column("last_processed_time", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("time_interval > interval '0'", name="time_interval_pipelines_interval_check"),
        schema=SCHEMA,
    )

    # 5) file_list_pipelines
    op.create_table(
        "file_list_pipelines",
        sa.Column(
            "pipeline_name",
            sa.Text(),
            sa.ForeignKey(PIPELINE_FK, ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
        sa.Column("file_pattern", sa.Text(), nullable=False),
        sa.Column("batched", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("list_function", sa.Text(), nullable=False),
        sa.Column("max_batch_size", sa.Integer(), nullable=True),
        schema=SCHEMA,
    )

    # 6) processed_files: append-only лог, ключ (pipeline_name, path)
    op.create_table(
        "processed_files",
        sa.Column(
            "pipeline_name",
            sa.Text(),
            sa.ForeignKey(PIPELINE_FK, ondelete="CASCADE", onupdate="CASCADE"),
            primary_key=True,
        ),
        sa.Column("path", sa.Text(), primary_key=True),
        sa.Column("processed_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        schema=SCHEMA,
    )

    # 7) schedules
    op.create_table(
        "schedules",
        sa.Column("job_id", sa.BigInteger(), sa.Identity(), primary_key=True),
        sa.Column("job_name", sa.Text(), nullable=False, unique=True),
        sa.Column(
            "pipeline_name",
            sa.Text(),
            sa.ForeignKey(PIPELINE_FK, ondelete="CASCADE", onupdate="CASCADE"),
            nullable=False,
        ),
        sa.Column("schedule", sa.Text(), nullable=False),
        sa.Column("command", sa.Text(), nullable=False),
        sa.Column("owner_id", sa.Text(), nullable=False),
        sa.Column("next_run_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("last_run_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        schema=SCHEMA,
    )
    op.create_index("ix_schedules_next_run_at", "schedules", ["next_run_at"], schema=SCHEMA)

    # 8) pipeline_runs
    op.create_table(
        "pipeline_runs",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=False),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column(
            "pipeline_name",
            sa.Text(),
            sa.ForeignKey(PIPELINE_FK, ondelete="CASCADE", onupdate="CASCADE"),
            nullable=False,
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("finished_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("units_processed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("items_processed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'RUNNING'")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.CheckConstraint(
            "status IN ('RUNNING', 'SUCCESS', 'FAILED')",
            name="pipeline_runs_status_check",
        ),
        schema=SCHEMA,
    )
    op.create_index(
        "ix_pipeline_runs_pipeline_started",
        "pipeline_runs",
        ["pipeline_name", "started_at"],
        schema=SCHEMA,
    )

    # 9) удаление источника удаляет его пайплайны; зависимые строки уходят каскадом
    op.execute(
        f"""
        CREATE FUNCTION {SCHEMA}._drop_trigger()
         RETURNS event_trigger
         LANGUAGE plpgsql
         SET search_path = pg_catalog
         SECURITY DEFINER
        AS $function$
        DECLARE
          v_obj record;
        BEGIN
          FOR v_obj IN
            SELECT * FROM pg_event_trigger_dropped_objects()
             WHERE object_type IN ('table', 'foreign table', 'sequence')
          LOOP
            DELETE FROM {SCHEMA}.pipelines p
             WHERE p.source_oid = v_obj.objid;

            DELETE FROM {SCHEMA}.pipelines p
             USING {SCHEMA}.sequence_pipelines s
             WHERE s.pipeline_name = p.pipeline_name
               AND s.sequence_oid = v_obj.objid;
          END LOOP;
        END;
        $function$;
        """
    )
    op.execute(
        f"CREATE EVENT TRIGGER {DROP_TRIGGER} ON sql_drop "
        f"EXECUTE FUNCTION {SCHEMA}._drop_trigger();"
    )


def downgrade() -> None:
    op.execute(f"DROP EVENT TRIGGER IF EXISTS {DROP_TRIGGER};")
    op.execute(f"DROP FUNCTION IF EXISTS {SCHEMA}._drop_trigger();")
    op.drop_index("ix_pipeline_runs_pipeline_started", table_name="pipeline_runs", schema=SCHEMA)
    op.drop_table("pipeline_runs", schema=SCHEMA)
    op.drop_index("ix_schedules_next_run_at", table_name="schedules", schema=SCHEMA)
    op.drop_table("schedules", schema=SCHEMA)
    op.drop_table("processed_files", schema=SCHEMA)
    op.drop_table("file_list_pipelines", schema=SCHEMA)
    op.drop_table("time_interval_pipelines", schema=SCHEMA)
    op.drop_table("sequence_pipelines", schema=SCHEMA)
    op.drop_table("pipelines", schema=SCHEMA)
