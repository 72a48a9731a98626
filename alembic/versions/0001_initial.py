"""initial refund lifecycle schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

# Must match vilo.models.refund.ACTIVE_STATUS_PREDICATE
ACTIVE_STATUS_PREDICATE = "status IN ('requested', 'under_review', 'approved', 'processing')"


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=30), nullable=False, server_default="guest"),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"])

    op.create_table(
        "properties",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("owner_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("cancellation_policy", sa.String(length=30), nullable=False, server_default="moderate"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ZAR"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_properties_owner_id", "properties", ["owner_id"])

    op.create_table(
        "property_team_members",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("property_id", sa.String(length=36), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("user_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="manager"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("property_id", "user_id", name="uq_property_team_member"),
    )
    op.create_index("ix_property_team_members_property_id", "property_team_members", ["property_id"])
    op.create_index("ix_property_team_members_user_id", "property_team_members", ["user_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_reference", sa.String(length=20), nullable=False),
        sa.Column("property_id", sa.String(length=36), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("guest_id", sa.String(length=36), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("check_in_date", sa.Date(), nullable=False),
        sa.Column("check_out_date", sa.Date(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ZAR"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_refunded", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="confirmed"),
        sa.Column("payment_status", sa.String(length=30), nullable=False, server_default="unpaid"),
        sa.Column("refund_status", sa.String(length=20), nullable=False, server_default="none"),
        sa.Column("line_items_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_bookings_booking_reference", "bookings", ["booking_reference"], unique=True)
    op.create_index("ix_bookings_property_id", "bookings", ["property_id"])
    op.create_index("ix_bookings_guest_id", "bookings", ["guest_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("provider", sa.String(length=40), nullable=False, server_default="manual"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ZAR"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("provider_ref", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])

    op.create_table(
        "refund_requests",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("requested_by", sa.String(length=36), nullable=False),
        sa.Column("requested_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("approved_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("refunded_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ZAR"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="requested"),
        sa.Column("reason_code", sa.String(length=40), nullable=False, server_default="other"),
        sa.Column("reason", sa.String(length=2000), nullable=False, server_default=""),
        sa.Column("customer_notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("internal_notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("refund_method", sa.String(length=30), nullable=False, server_default="manual"),
        sa.Column("gateway_refund_id", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("completion_reference", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("credit_memo_id", sa.String(length=36), nullable=True),
        sa.Column("suggested_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("cancellation_policy", sa.String(length=30), nullable=False, server_default=""),
        sa.Column("calculated_policy_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("reviewed_by", sa.String(length=36), nullable=False, server_default=""),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_by", sa.String(length=36), nullable=False, server_default=""),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_by", sa.String(length=36), nullable=False, server_default=""),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", sa.String(length=36), nullable=False, server_default=""),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_refund_requests_booking_id", "refund_requests", ["booking_id"])
    op.create_index("ix_refund_requests_requested_by", "refund_requests", ["requested_by"])
    op.create_index("ix_refund_requests_status", "refund_requests", ["status"])
    op.create_index(
        "uq_refund_requests_active_booking",
        "refund_requests",
        ["booking_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_STATUS_PREDICATE),
        sqlite_where=sa.text(ACTIVE_STATUS_PREDICATE),
    )

    op.create_table(
        "refund_status_history",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("refund_request_id", sa.String(length=36), sa.ForeignKey("refund_requests.id"), nullable=False),
        sa.Column("from_status", sa.String(length=20), nullable=True),
        sa.Column("to_status", sa.String(length=20), nullable=False),
        sa.Column("changed_by", sa.String(length=36), nullable=False),
        sa.Column("change_reason", sa.String(length=2000), nullable=False, server_default=""),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_refund_status_history_refund_request_id", "refund_status_history", ["refund_request_id"])

    op.create_table(
        "refund_comments",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("refund_request_id", sa.String(length=36), sa.ForeignKey("refund_requests.id"), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("body", sa.String(length=2000), nullable=False),
        sa.Column("is_internal", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_refund_comments_refund_request_id", "refund_comments", ["refund_request_id"])
    op.create_index("ix_refund_comments_user_id", "refund_comments", ["user_id"])

    op.create_table(
        "refund_documents",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("refund_request_id", sa.String(length=36), sa.ForeignKey("refund_requests.id"), nullable=False),
        sa.Column("uploaded_by", sa.String(length=36), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_type", sa.String(length=100), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("storage", sa.String(length=16), nullable=False, server_default="local"),
        sa.Column("object_key", sa.String(length=512), nullable=False),
        sa.Column("document_type", sa.String(length=40), nullable=False, server_default="other"),
        sa.Column("description", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("verified_by", sa.String(length=36), nullable=False, server_default=""),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_refund_documents_refund_request_id", "refund_documents", ["refund_request_id"])
    op.create_index("ix_refund_documents_uploaded_by", "refund_documents", ["uploaded_by"])

    op.create_table(
        "credit_memos",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("credit_memo_number", sa.String(length=20), nullable=False),
        sa.Column("refund_request_id", sa.String(length=36), sa.ForeignKey("refund_requests.id"), nullable=False),
        sa.Column("booking_id", sa.String(length=36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("customer_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("customer_email", sa.String(length=320), nullable=False, server_default=""),
        sa.Column("property_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("line_items_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("subtotal_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("total_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="ZAR"),
        sa.Column("reason", sa.String(length=2000), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=10), nullable=False, server_default="draft"),
        sa.Column("document_storage", sa.String(length=16), nullable=False, server_default="local"),
        sa.Column("document_object_key", sa.String(length=512), nullable=False, server_default=""),
        sa.Column("document_url", sa.String(length=1024), nullable=False, server_default=""),
        sa.Column("issued_by", sa.String(length=36), nullable=False, server_default=""),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_by", sa.String(length=36), nullable=False, server_default=""),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_credit_memos_credit_memo_number", "credit_memos", ["credit_memo_number"], unique=True)
    op.create_index("ix_credit_memos_refund_request_id", "credit_memos", ["refund_request_id"])
    op.create_index("ix_credit_memos_booking_id", "credit_memos", ["booking_id"])
    op.create_index("ix_credit_memos_user_id", "credit_memos", ["user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("template_key", sa.String(length=80), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False, server_default=""),
        sa.Column("priority", sa.String(length=10), nullable=False, server_default="normal"),
        sa.Column("data_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("refund_request_id", sa.String(length=36), nullable=False, server_default=""),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_template_key", "notifications", ["template_key"])
    op.create_index("ix_notifications_refund_request_id", "notifications", ["refund_request_id"])

    op.create_table(
        "email_templates",
        sa.Column("key", sa.String(length=80), primary_key=True),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "email_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("to_email", sa.String(length=320), nullable=False),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("template_key", sa.String(length=80), nullable=False, server_default=""),
        sa.Column("provider", sa.String(length=30), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="queued"),
        sa.Column("related_refund_id", sa.String(length=36), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_email_logs_to_email", "email_logs", ["to_email"])
    op.create_index("ix_email_logs_related_refund_id", "email_logs", ["related_refund_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor_user_id", sa.String(length=36), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_user_id", "audit_logs", ["actor_user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"])
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"])

    op.create_table(
        "settings",
        sa.Column("key", sa.String(length=80), primary_key=True),
        sa.Column("int_value", sa.Integer(), nullable=True),
        sa.Column("str_value", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    for table in (
        "settings", "audit_logs", "email_logs", "email_templates", "notifications", "credit_memos",
        "refund_documents", "refund_comments", "refund_status_history",
    ):
        op.drop_table(table)
    op.drop_index("uq_refund_requests_active_booking", table_name="refund_requests")
    for table in ("refund_requests", "payments", "bookings", "property_team_members", "properties", "users"):
        op.drop_table(table)
