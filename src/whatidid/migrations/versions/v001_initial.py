"""Initial schema: spaces, pages, labels, links and the FTS5 index

Version: 1
Create Date: 2025-01-12 09:30:00.000000

"""
import sqlalchemy as sa

from whatidid.models.db_models import LINK_RELATION_CHECK, PAGE_TYPE_CHECK

version = 1


def upgrade(op) -> None:
    """Create the base tables, the search index and its triggers."""
    op.create_table(
        "schema_meta",
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "spaces",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("slug", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "pages",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("space_id", sa.String(64), sa.ForeignKey("spaces.id"), nullable=False),
        sa.Column(
            "parent_id",
            sa.String(64),
            sa.ForeignKey("pages.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("page_type", sa.String(50), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_by_user", sa.String(255), nullable=False),
        sa.Column("created_by_agent", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint(PAGE_TYPE_CHECK, name="ck_pages_page_type"),
    )
    op.create_table(
        "labels",
        sa.Column(
            "page_id",
            sa.String(64),
            sa.ForeignKey("pages.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("label", sa.String(255), primary_key=True),
    )
    op.create_table(
        "links",
        sa.Column(
            "source_id",
            sa.String(64),
            sa.ForeignKey("pages.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "target_id",
            sa.String(64),
            sa.ForeignKey("pages.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("relation", sa.String(50), nullable=False, server_default="relates-to"),
        sa.CheckConstraint(LINK_RELATION_CHECK, name="ck_links_relation"),
    )

    op.create_index("ix_pages_space_id", "pages", ["space_id"])
    op.create_index("ix_pages_page_type", "pages", ["page_type"])
    op.create_index("ix_pages_parent_id", "pages", ["parent_id"])
    op.create_index("ix_labels_label", "labels", ["label"])

    # External-content index: stores only the tokenized projection of
    # pages(title, content), keyed by the pages rowid
    op.execute(
        "CREATE VIRTUAL TABLE pages_fts USING fts5("
        "title, content, content='pages', content_rowid='rowid')"
    )
    op.execute("""
        CREATE TRIGGER pages_ai AFTER INSERT ON pages BEGIN
            INSERT INTO pages_fts(rowid, title, content)
            VALUES (new.rowid, new.title, new.content);
        END
    """)
    op.execute("""
        CREATE TRIGGER pages_ad AFTER DELETE ON pages BEGIN
            INSERT INTO pages_fts(pages_fts, rowid, title, content)
            VALUES ('delete', old.rowid, old.title, old.content);
        END
    """)
    op.execute("""
        CREATE TRIGGER pages_au AFTER UPDATE ON pages BEGIN
            INSERT INTO pages_fts(pages_fts, rowid, title, content)
            VALUES ('delete', old.rowid, old.title, old.content);
            INSERT INTO pages_fts(rowid, title, content)
            VALUES (new.rowid, new.title, new.content);
        END
    """)
