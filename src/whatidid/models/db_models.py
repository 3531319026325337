"""SQLAlchemy database models and engine setup for the knowledge base.

Tables are created by the numbered migrations in ``whatidid.migrations``,
never by ``Base.metadata.create_all``; the mappings here must match the
schema those migrations leave behind.
"""
from pathlib import Path
from typing import Optional, Union

from sqlalchemy import (JSON, CheckConstraint, Column, DateTime, ForeignKey,
                        Integer, String, Text, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool

from whatidid.config import KnowledgeBaseConfig, config
from whatidid.models.schema import LinkRelation, PageType

# Execution option read by the "begin" listener to choose the BEGIN flavour
BEGIN_MODE_OPTION = "sqlite_begin"

PAGE_TYPE_CHECK = "page_type IN ({})".format(
    ", ".join(f"'{t.value}'" for t in PageType)
)
LINK_RELATION_CHECK = "relation IN ({})".format(
    ", ".join(f"'{r.value}'" for r in LinkRelation)
)

Base = declarative_base()


class DBSpace(Base):
    """Database model for a space."""
    __tablename__ = "spaces"
    id = Column(String(64), primary_key=True)
    slug = Column(String(255), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime)

    pages = relationship("DBPage", back_populates="space", passive_deletes=True)

    def __repr__(self) -> str:
        return f"<Space(slug='{self.slug}')>"


class DBPage(Base):
    """Database model for a page."""
    __tablename__ = "pages"
    __table_args__ = (CheckConstraint(PAGE_TYPE_CHECK, name="ck_pages_page_type"),)

    id = Column(String(64), primary_key=True)
    space_id = Column(String(64), ForeignKey("spaces.id"), nullable=False, index=True)
    parent_id = Column(
        String(64), ForeignKey("pages.id", ondelete="SET NULL"), index=True
    )
    title = Column(String(500), nullable=False)
    page_type = Column(String(50), nullable=False, index=True)
    content = Column(Text, nullable=False, default="")
    sections = Column(JSON(none_as_null=True))
    created_by_user = Column(String(255), nullable=False)
    created_by_agent = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    version = Column(Integer, nullable=False, default=1)

    space = relationship("DBSpace", back_populates="pages")
    labels = relationship(
        "DBLabel",
        back_populates="page",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DBLabel.label",
    )

    def __repr__(self) -> str:
        return f"<Page(id='{self.id}', title='{self.title}', version={self.version})>"


class DBLabel(Base):
    """Database model for a (page, label) pair."""
    __tablename__ = "labels"
    page_id = Column(
        String(64), ForeignKey("pages.id", ondelete="CASCADE"), primary_key=True
    )
    label = Column(String(255), primary_key=True, index=True)

    page = relationship("DBPage", back_populates="labels")


class DBLink(Base):
    """Database model for a directed link between pages."""
    __tablename__ = "links"
    __table_args__ = (CheckConstraint(LINK_RELATION_CHECK, name="ck_links_relation"),)

    source_id = Column(
        String(64), ForeignKey("pages.id", ondelete="CASCADE"), primary_key=True
    )
    target_id = Column(
        String(64), ForeignKey("pages.id", ondelete="CASCADE"), primary_key=True
    )
    relation = Column(String(50), nullable=False, default=LinkRelation.RELATES_TO.value)
    created_at = Column(DateTime)
    updated_at = Column(DateTime)

    def __repr__(self) -> str:
        return f"<Link({self.source_id} -{self.relation}-> {self.target_id})>"


def init_db(
    database_path: Optional[Union[str, Path]] = None,
    settings: Optional[KnowledgeBaseConfig] = None,
) -> Engine:
    """Create an engine for the knowledge base file.

    Applies the SQLite settings every connection needs:
    - WAL mode so readers never block the single writer
    - foreign keys ON so label/link cascades fire
    - a busy timeout so a contending writer waits before failing
    - driver-level autocommit with explicit BEGIN emitted by SQLAlchemy,
      so DDL participates in transactions and writers can ask for
      BEGIN IMMEDIATE through the ``sqlite_begin`` execution option
    """
    settings = settings or config
    busy_timeout = settings.busy_timeout

    engine = create_engine(
        settings.get_db_url(database_path),
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_pre_ping=True,
        connect_args={"timeout": busy_timeout, "check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # Hand transaction control to the "begin" listener below
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout * 1000)}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        mode = conn.get_execution_options().get(BEGIN_MODE_OPTION, "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")

    return engine


def write_engine(engine: Engine) -> Engine:
    """Return a view of ``engine`` whose transactions start with BEGIN IMMEDIATE."""
    return engine.execution_options(**{BEGIN_MODE_OPTION: "IMMEDIATE"})


def get_session_factory(engine: Engine, immediate: bool = False) -> sessionmaker:
    """Create a session factory for the given engine.

    Args:
        engine: Engine returned by ``init_db``.
        immediate: Take the write lock when the transaction starts instead
            of on the first write statement.
    """
    bind = write_engine(engine) if immediate else engine
    return sessionmaker(bind=bind, expire_on_commit=False)

