"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "user_groups",
        sa.Column(
            "user_id", sa.String(length=64), sa.ForeignKey("users.id"), primary_key=True
        ),
        sa.Column(
            "group_id",
            sa.String(length=36),
            sa.ForeignKey("groups.id"),
            primary_key=True,
        ),
        sa.Column(
            "role", sa.Enum("admin", "member", name="grouprole"), nullable=False
        ),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="categorytype"), nullable=False
        ),
        *_timestamps(),
        sa.UniqueConstraint("name", "type", name="uq_category_name_type"),
    )

    for table, note_column in (("incomes", "memo"), ("expenses", "description")):
        op.create_table(
            table,
            sa.Column("id", sa.String(length=36), primary_key=True),
            sa.Column(
                "user_id",
                sa.String(length=64),
                sa.ForeignKey("users.id"),
                nullable=False,
            ),
            sa.Column("group_id", sa.String(length=36), sa.ForeignKey("groups.id")),
            sa.Column(
                "category_id",
                sa.String(length=36),
                sa.ForeignKey("categories.id"),
                nullable=False,
            ),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column(note_column, sa.Text()),
            sa.Column("date", sa.DateTime(), nullable=False),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            *_timestamps(),
        )
        op.create_index(f"ix_{table}_user_date", table, ["user_id", "date"])
        op.create_index(f"ix_{table}_group_date", table, ["group_id", "date"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("group_id", sa.String(length=36), sa.ForeignKey("groups.id")),
        sa.Column("user_id", sa.String(length=64), sa.ForeignKey("users.id")),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("purpose", sa.String(length=200), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
    )
    op.create_index("ix_budgets_group_date", "budgets", ["group_id", "date"])


def downgrade() -> None:
    op.drop_index("ix_budgets_group_date", table_name="budgets")
    op.drop_table("budgets")
    for table in ("expenses", "incomes"):
        op.drop_index(f"ix_{table}_group_date", table_name=table)
        op.drop_index(f"ix_{table}_user_date", table_name=table)
        op.drop_table(table)
    op.drop_table("categories")
    op.drop_table("user_groups")
    op.drop_table("groups")
    op.drop_table("users")
