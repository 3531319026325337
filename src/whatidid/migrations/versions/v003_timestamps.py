"""Track update times on spaces and creation/update times on links

Version: 3
Create Date: 2025-03-21 10:45:00.000000

"""
import sqlalchemy as sa

version = 3


def upgrade(op) -> None:
    """Add timestamp columns and backfill them from existing rows."""
    op.add_column("spaces", sa.Column("updated_at", sa.DateTime(), nullable=True))
    op.add_column("links", sa.Column("created_at", sa.DateTime(), nullable=True))
    op.add_column("links", sa.Column("updated_at", sa.DateTime(), nullable=True))

    op.execute("UPDATE spaces SET updated_at = created_at WHERE updated_at IS NULL")
    # A link can be no older than its source page
    op.execute("""
        UPDATE links SET created_at = (
            SELECT pages.created_at FROM pages WHERE pages.id = links.source_id
        )
        WHERE created_at IS NULL
    """)
    op.execute("UPDATE links SET updated_at = created_at WHERE updated_at IS NULL")
