"""Index the columns search filters and orders on; narrow the FTS update trigger

Version: 4
Create Date: 2025-06-08 16:20:00.000000

"""
version = 4


def upgrade(op) -> None:
    """Add filter/ordering indexes and reindex only on title or content change."""
    op.create_index("ix_pages_updated_at", "pages", ["updated_at"])
    op.create_index("ix_pages_created_by_user", "pages", ["created_by_user"])
    op.create_index("ix_pages_created_by_agent", "pages", ["created_by_agent"])

    # Version bumps and label-only edits no longer churn the index
    op.execute("DROP TRIGGER IF EXISTS pages_au")
    op.execute("""
        CREATE TRIGGER pages_au AFTER UPDATE OF title, content ON pages BEGIN
            INSERT INTO pages_fts(pages_fts, rowid, title, content)
            VALUES ('delete', old.rowid, old.title, old.content);
            INSERT INTO pages_fts(rowid, title, content)
            VALUES (new.rowid, new.title, new.content);
        END
    """)
