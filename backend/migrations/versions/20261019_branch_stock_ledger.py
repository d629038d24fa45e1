"""Branch stock positions, stock ledger, and ranking aggregates

Revision ID: 20261019_branch_stock_ledger
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_branch_stock_ledger"
down_revision = None
branch_labels = None
depends_on = None


def _now():
    return sa.text("CURRENT_TIMESTAMP")


def _totals_columns():
    return [
        sa.Column("transactions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("units_sold", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("revenue_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("margin_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refreshed_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_branches_is_active", "branches", ["is_active"], unique=False)

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "variants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("sku", sa.String(length=64), nullable=False),
        sa.Column("barcode", sa.String(length=64), nullable=True),
        sa.Column("model", sa.String(length=128), nullable=True),
        sa.Column("color", sa.String(length=64), nullable=True),
        sa.Column("purchase_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("list_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sku"),
        sa.UniqueConstraint("barcode"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_variants_product", "variants", ["product_id"], unique=False)

    op.create_table(
        "stock_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.CheckConstraint("quantity >= 0", name="ck_stock_accounts_quantity_non_negative"),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("variant_id", "branch_id", name="uq_stock_accounts_variant_branch"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stock_accounts_branch", "stock_accounts", ["branch_id"], unique=False)

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("reason_code", sa.String(length=32), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=True),
        sa.Column("note", sa.String(length=255), nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), server_default=_now(), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_ledger_entries_quantity_positive"),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"]),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_ledger_entries_actor_id", "ledger_entries", ["actor_id"], unique=False)
    op.create_index("ix_ledger_entries_recorded_at", "ledger_entries", ["recorded_at"], unique=False)
    op.create_index(
        "ix_ledger_variant_branch_recorded", "ledger_entries", ["variant_id", "branch_id", "recorded_at"], unique=False
    )
    op.create_index("ix_ledger_branch_recorded", "ledger_entries", ["branch_id", "recorded_at"], unique=False)
    op.create_index("ix_ledger_reason_recorded", "ledger_entries", ["reason_code", "recorded_at"], unique=False)

    op.create_table(
        "variant_sales_rankings",
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("rank_most_sold", sa.Integer(), nullable=False),
        sa.Column("rank_least_sold", sa.Integer(), nullable=False),
        *_totals_columns(),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"]),
        sa.PrimaryKeyConstraint("variant_id"),
    )
    op.create_index("ix_variant_sales_rankings_rank_most_sold", "variant_sales_rankings", ["rank_most_sold"])
    op.create_index("ix_variant_sales_rankings_rank_least_sold", "variant_sales_rankings", ["rank_least_sold"])

    op.create_table(
        "branch_variant_sales_rankings",
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("variant_id", sa.Integer(), nullable=False),
        sa.Column("rank_most_sold", sa.Integer(), nullable=False),
        sa.Column("rank_least_sold", sa.Integer(), nullable=False),
        *_totals_columns(),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["variant_id"], ["variants.id"]),
        sa.PrimaryKeyConstraint("branch_id", "variant_id"),
    )
    op.create_index("ix_branch_rankings_most", "branch_variant_sales_rankings", ["branch_id", "rank_most_sold"])
    op.create_index("ix_branch_rankings_least", "branch_variant_sales_rankings", ["branch_id", "rank_least_sold"])

    op.create_table(
        "branch_sales_summaries",
        sa.Column("branch_id", sa.Integer(), nullable=False),
        *_totals_columns(),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.PrimaryKeyConstraint("branch_id"),
    )


def downgrade():
    op.drop_table("branch_sales_summaries")
    op.drop_index("ix_branch_rankings_least", table_name="branch_variant_sales_rankings")
    op.drop_index("ix_branch_rankings_most", table_name="branch_variant_sales_rankings")
    op.drop_table("branch_variant_sales_rankings")
    op.drop_index("ix_variant_sales_rankings_rank_least_sold", table_name="variant_sales_rankings")
    op.drop_index("ix_variant_sales_rankings_rank_most_sold", table_name="variant_sales_rankings")
    op.drop_table("variant_sales_rankings")
    op.drop_index("ix_ledger_reason_recorded", table_name="ledger_entries")
    op.drop_index("ix_ledger_branch_recorded", table_name="ledger_entries")
    op.drop_index("ix_ledger_variant_branch_recorded", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_recorded_at", table_name="ledger_entries")
    op.drop_index("ix_ledger_entries_actor_id", table_name="ledger_entries")
    op.drop_table("ledger_entries")
    op.drop_index("ix_stock_accounts_branch", table_name="stock_accounts")
    op.drop_table("stock_accounts")
    op.drop_index("ix_variants_product", table_name="variants")
    op.drop_table("variants")
    op.drop_table("products")
    op.drop_index("ix_branches_is_active", table_name="branches")
    op.drop_table("branches")
