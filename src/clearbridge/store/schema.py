# src/clearbridge/store/schema.py
"""SQLAlchemy table definitions for the invocation store and clearance tables.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with multiple database backends.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
)

# Shared metadata for all tables
metadata = MetaData()

# === Invocations ===

# No subject/program columns: identity is recovered from the first logged
# request body, so an invocation never links to a case prematurely.
invocations_table = Table(
    "invocations",
    metadata,
    Column("invocation_id", Integer, primary_key=True, autoincrement=True),
    Column("provider_code", String(64), nullable=False),
    Column("operation_code", String(64), nullable=False),
    Column("status", String(32), nullable=False),
    Column("attempt_count", Integer, nullable=False, default=0),
    Column("next_retry_time", DateTime(timezone=True)),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_on", DateTime(timezone=True), nullable=False),
    Column("created_by", String(64), nullable=False),
    Column("updated_on", DateTime(timezone=True), nullable=False),
    Column("updated_by", String(64), nullable=False),
)

Index("ix_invocations_status_retry", invocations_table.c.status, invocations_table.c.next_retry_time)
Index(
    "ix_invocations_provider_operation",
    invocations_table.c.provider_code,
    invocations_table.c.operation_code,
)

invocation_logs_table = Table(
    "invocation_logs",
    metadata,
    Column("log_id", Integer, primary_key=True, autoincrement=True),
    Column("invocation_id", Integer, ForeignKey("invocations.invocation_id"), nullable=False),
    Column("log_sequence", Integer, nullable=False),
    Column("kind", String(16), nullable=False),  # request, response, error
    Column("status", String(32), nullable=False),
    Column("request_payload", Text),
    Column("response_payload", Text),
    Column("response_status_code", Integer),
    Column("request_sent_on", DateTime(timezone=True)),
    Column("response_received_on", DateTime(timezone=True)),
    Column("response_time_ms", Integer),
    Column("error_details", Text),
    Column("created_on", DateTime(timezone=True), nullable=False),
    Column("created_by", String(64), nullable=False),
    UniqueConstraint("invocation_id", "log_sequence", name="uq_invocation_log_sequence"),
)

# === Endpoint catalog ===

endpoints_table = Table(
    "endpoints",
    metadata,
    Column("endpoint_id", Integer, primary_key=True, autoincrement=True),
    Column("provider_code", String(64), nullable=False),
    Column("operation_code", String(64), nullable=False),
    Column("base_url", String(512), nullable=False),
    Column("path_template", String(512), nullable=False),
    Column("http_method", String(8), nullable=False),
    Column("timeout_seconds", Integer, nullable=False),
    Column("max_attempts", Integer, nullable=False, default=1),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("data_models", String(512), nullable=False, default=""),  # comma-separated model names
    Column("payload_template", Text),
    Column("sample_payload", Text),
    Column("sample_response", Text),
    Column("retrigger", Boolean, nullable=False, default=False),
    Column("retrigger_count", Integer, nullable=False, default=0),
    Column("retrigger_interval_minutes", Integer, nullable=False, default=1),
    Column("created_on", DateTime(timezone=True), nullable=False),
    Column("updated_on", DateTime(timezone=True), nullable=False),
)

Index("ix_endpoints_provider_operation", endpoints_table.c.provider_code, endpoints_table.c.operation_code)

# === Internal case entities ===

users_table = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("first_name", String(128), nullable=False),
    Column("middle_name", String(128)),
    Column("last_name", String(128), nullable=False),
    Column("gender", String(16)),
    Column("date_of_birth", DateTime(timezone=True)),
    Column("personal_email", String(256)),
    Column("nationality_iso_code", String(8)),
)

subjects_table = Table(
    "subjects",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id")),
    Column("index_number", String(32)),
    Column("first_name", String(128)),
    Column("middle_name", String(128)),
    Column("last_name", String(128)),
    Column("gender", String(16)),
    Column("date_of_birth", DateTime(timezone=True)),
    Column("email_address", String(256)),
    Column("nationality_code", String(8)),
    Column("employee_type", String(64)),
    Column("occupation_group", String(64)),
    Column("functional_title_code", String(32)),
    Column("functional_title_description", String(256)),
)

Index("ix_subjects_index_number", subjects_table.c.index_number)

assignments_table = Table(
    "assignments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(256), nullable=False),
    Column("organization_mission", String(256)),
    Column("duty_station_code", String(32)),
    Column("duty_station_description", String(256)),
    Column("start_date", DateTime(timezone=True)),
    Column("expected_end_date", DateTime(timezone=True)),
)

# A program is one subject considered for one assignment.
programs_table = Table(
    "programs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("assignment_id", Integer, ForeignKey("assignments.id"), nullable=False),
    Column("subject_id", Integer, ForeignKey("subjects.id"), nullable=False),
    Column("sequence_number", String(32)),
    Column("clearance_type", String(64)),
    Column("request_status", String(64)),
    Column("request_date", DateTime(timezone=True)),
    Column("start_date", DateTime(timezone=True)),
    Column("end_date", DateTime(timezone=True)),
)

# === Clearance state ===

clearances_table = Table(
    "clearances",
    metadata,
    Column("clearance_id", Integer, primary_key=True, autoincrement=True),
    Column("subject_id", Integer, nullable=False),
    Column("program_id", Integer),
    Column("provider_code", String(64), nullable=False),
    Column("status_code", String(32), nullable=False),
    Column("requested_date", DateTime(timezone=True), nullable=False),
    Column("completion_date", DateTime(timezone=True)),
    Column("outcome", String(128)),
    Column("link_remarks", Text),
    Column("additional_remarks", Text),
    Column("updated_on", DateTime(timezone=True), nullable=False),
    UniqueConstraint("subject_id", "provider_code", name="uq_clearance_subject_provider"),
)

clearance_links_table = Table(
    "clearance_links",
    metadata,
    Column("link_id", Integer, primary_key=True, autoincrement=True),
    Column("subject_id", Integer, nullable=False),
    Column("program_id", Integer, nullable=False),
    Column("assignment_id", Integer),
    Column("provider_code", String(64), nullable=False),
    Column("provider_request_id", String(128)),
    Column("provider_response_id", String(128)),
    Column("is_completed", Boolean, nullable=False, default=False),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("requested_date", DateTime(timezone=True), nullable=False),
    Column("completion_date", DateTime(timezone=True)),
)

Index("ix_clearance_links_subject_provider", clearance_links_table.c.subject_id, clearance_links_table.c.provider_code)
Index("ix_clearance_links_program", clearance_links_table.c.program_id)
Index("ix_clearance_links_request_id", clearance_links_table.c.provider_request_id)
