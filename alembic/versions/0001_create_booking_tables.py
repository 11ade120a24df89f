from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def _status(length: int = 32):
    return sa.String(length=length)


def upgrade():
    op.create_table(
        "slots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("worker_id", sa.String(), nullable=False),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("status", _status(), nullable=False),
        sa.UniqueConstraint("worker_id", "slot_date", "start_time", name="uq_slots_worker_start"),
    )
    op.create_index("ix_slots_worker_id", "slots", ["worker_id"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_number", sa.String(), nullable=False),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("service_category_id", sa.String(), nullable=True),
        sa.Column("booking_type", _status(), nullable=False),
        sa.Column("payment_method", _status(), nullable=False),
        sa.Column("service_description", sa.Text(), nullable=False),
        sa.Column("service_location", sa.String(), nullable=False),
        sa.Column("location_latitude", sa.Float(), nullable=True),
        sa.Column("location_longitude", sa.Float(), nullable=True),
        sa.Column("scheduled_date", sa.Date(), nullable=True),
        sa.Column("scheduled_time", sa.Time(), nullable=True),
        sa.Column("slot_id", sa.Integer(), sa.ForeignKey("slots.id"), nullable=True),
        sa.Column("estimated_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("final_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", _status(), nullable=False),
        sa.Column("payment_status", _status(), nullable=False),
        sa.Column("payment_transaction_id", sa.String(), nullable=True),
        sa.Column("rejection_reason", sa.String(), nullable=True),
        sa.Column("cancellation_reason", sa.String(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("event_seq", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
    )
    op.create_index("ix_bookings_booking_number", "bookings", ["booking_number"], unique=True)
    op.create_index("ix_bookings_customer_id", "bookings", ["customer_id"], unique=False)
    op.create_index("ix_bookings_worker_id", "bookings", ["worker_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)

    op.create_table(
        "estimates",
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), primary_key=True),
        sa.Column("worker_id", sa.String(), primary_key=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", _status(), nullable=False),
    )

    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("gateway", _status(), nullable=False),
        sa.Column("external_id", sa.String(), nullable=False),
        sa.Column("base_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("points_redeemed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", _status(), nullable=False),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_payment_transactions_external_id", "payment_transactions", ["external_id"], unique=True)
    op.create_index("ix_payment_transactions_booking_id", "payment_transactions", ["booking_id"], unique=False)

    op.create_table(
        "loyalty_accounts",
        sa.Column("customer_id", sa.String(), primary_key=True),
        sa.Column("points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("tier", sa.String(), nullable=False, server_default="Bronze"),
    )

    op.create_table(
        "loyalty_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("customer_id", sa.String(), nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column("points_earned", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("points_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_loyalty_history_customer_id", "loyalty_history", ["customer_id"], unique=False)
    op.create_index("ix_loyalty_history_booking_id", "loyalty_history", ["booking_id"], unique=False)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("recipients", sa.JSON(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("booking_id", "seq", name="uq_notifications_booking_seq"),
    )
    op.create_index("ix_notifications_booking_id", "notifications", ["booking_id"], unique=False)
    op.create_index("ix_notifications_published_at", "notifications", ["published_at"], unique=False)


def downgrade():
    op.drop_index("ix_notifications_published_at", table_name="notifications")
    op.drop_index("ix_notifications_booking_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_loyalty_history_booking_id", table_name="loyalty_history")
    op.drop_index("ix_loyalty_history_customer_id", table_name="loyalty_history")
    op.drop_table("loyalty_history")
    op.drop_table("loyalty_accounts")
    op.drop_index("ix_payment_transactions_booking_id", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_external_id", table_name="payment_transactions")
    op.drop_table("payment_transactions")
    op.drop_table("estimates")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_worker_id", table_name="bookings")
    op.drop_index("ix_bookings_customer_id", table_name="bookings")
    op.drop_index("ix_bookings_booking_number", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("ix_slots_worker_id", table_name="slots")
    op.drop_table("slots")
