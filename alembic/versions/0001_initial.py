"""initial: sheet_rows

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

def upgrade() -> None:
    op.create_table(
        "sheet_rows",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("sheet", sa.String(length=40), nullable=False),
        sa.Column("row_index", sa.Integer(), nullable=False),
        sa.Column("cells_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("sheet", "row_index", name="uq_sheet_rows_sheet_row"),
    )
    op.create_index("ix_sheet_rows_sheet", "sheet_rows", ["sheet"])


def downgrade() -> None:
    op.drop_index("ix_sheet_rows_sheet", table_name="sheet_rows")
    op.drop_table("sheet_rows")
