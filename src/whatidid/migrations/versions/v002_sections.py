"""Add structured sections to pages

Version: 2
Create Date: 2025-02-03 14:10:00.000000

"""
import sqlalchemy as sa

version = 2


def upgrade(op) -> None:
    """Add the nullable JSON sections column; existing pages stay freeform."""
    op.add_column("pages", sa.Column("sections", sa.JSON(), nullable=True))
