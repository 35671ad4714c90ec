"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19

Initial database schema for the Rental Token Service.
"""

from collections.abc import Sequence

import sqlalchemy as sa
import sqlmodel

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

PAYMENT_STATUS = sa.Enum(
    "PENDING", "COMPLETED", "FAILED", "CANCELLED", "TIMEOUT", name="paymentstatus"
)
LEDGER_REASON = sa.Enum(
    "PURCHASE", "REWARD", "REVERSAL", "SEARCH_DEBIT", "CONTACT_DEBIT", name="ledgerreason"
)


def upgrade() -> None:
    """Create initial database schema."""
    # Users table (local mirror of Clerk identities)
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("clerk_id", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("email", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=False),
        sa.Column("username", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
        sa.Column("role", sa.Enum("TENANT", "OWNER", "ADMIN", name="userrole"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_clerk_id"), "users", ["clerk_id"], unique=True)
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=False)

    # Token packages table
    op.create_table(
        "token_packages",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column("description", sqlmodel.sql.sqltypes.AutoString(length=500), nullable=True),
        sa.Column("token_count", sa.Integer(), nullable=False),
        sa.Column("price", sa.DECIMAL(12, 2), nullable=False),
        sa.Column("currency", sqlmodel.sql.sqltypes.AutoString(length=3), nullable=False),
        sa.Column("features", sa.JSON(), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("token_count > 0", name="ck_token_packages_token_count"),
        sa.CheckConstraint("price > 0", name="ck_token_packages_price"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_token_packages_is_active"), "token_packages", ["is_active"])

    # Payment transactions table
    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("package_id", sa.Integer(), nullable=False),
        sa.Column("package_name", sqlmodel.sql.sqltypes.AutoString(length=100), nullable=False),
        sa.Column("amount", sa.DECIMAL(12, 2), nullable=False),
        sa.Column("currency", sqlmodel.sql.sqltypes.AutoString(length=3), nullable=False),
        sa.Column("tokens_purchased", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.Enum("MPESA", name="paymentmethod"), nullable=False),
        sa.Column("phone_number", sqlmodel.sql.sqltypes.AutoString(length=15), nullable=False),
        sa.Column(
            "provider_reference", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True
        ),
        sa.Column(
            "merchant_request_id", sqlmodel.sql.sqltypes.AutoString(length=64), nullable=True
        ),
        sa.Column("status", PAYMENT_STATUS, nullable=False),
        sa.Column("result_code", sa.Integer(), nullable=True),
        sa.Column("result_desc", sqlmodel.sql.sqltypes.AutoString(length=255), nullable=True),
        sa.Column("mpesa_receipt", sqlmodel.sql.sqltypes.AutoString(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["package_id"], ["token_packages.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_payment_transactions_user_id"), "payment_transactions", ["user_id"]
    )
    op.create_index(
        op.f("ix_payment_transactions_package_id"), "payment_transactions", ["package_id"]
    )
    op.create_index(
        op.f("ix_payment_transactions_provider_reference"),
        "payment_transactions",
        ["provider_reference"],
        unique=True,
    )
    op.create_index(op.f("ix_payment_transactions_status"), "payment_transactions", ["status"])
    op.create_index(
        op.f("ix_payment_transactions_created_at"), "payment_transactions", ["created_at"]
    )

    # Token accounts table (cached balance, per-user lock row)
    op.create_table(
        "token_accounts",
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("balance", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("balance >= 0", name="ck_token_accounts_balance"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("user_id"),
    )

    # Ledger entries table (append-only)
    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("reason", LEDGER_REASON, nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("related_transaction_id", sa.Integer(), nullable=True),
        sa.Column("reversed_entry_id", sa.Integer(), nullable=True),
        sa.Column("remark", sqlmodel.sql.sqltypes.AutoString(length=500), nullable=True),
        sa.Column("operator_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["operator_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["related_transaction_id"], ["payment_transactions.id"]),
        sa.ForeignKeyConstraint(["reversed_entry_id"], ["ledger_entries.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "related_transaction_id", "reason", name="uq_ledger_entries_transaction_reason"
        ),
        sa.UniqueConstraint("reversed_entry_id"),
    )
    op.create_index(op.f("ix_ledger_entries_user_id"), "ledger_entries", ["user_id"])
    op.create_index(op.f("ix_ledger_entries_reason"), "ledger_entries", ["reason"])
    op.create_index(
        op.f("ix_ledger_entries_related_transaction_id"),
        "ledger_entries",
        ["related_transaction_id"],
    )
    op.create_index(op.f("ix_ledger_entries_created_at"), "ledger_entries", ["created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("ledger_entries")
    op.drop_table("token_accounts")
    op.drop_table("payment_transactions")
    op.drop_table("token_packages")
    op.drop_table("users")
