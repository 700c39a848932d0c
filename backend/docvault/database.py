import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from sqlalchemy import create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from docvault.config import settings


class Base(DeclarativeBase):
    pass


def _set_sqlite_pragmas(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine(db_path: Path | None = None):
    path = db_path or settings.db_path
    engine = create_engine(
        f"sqlite:///{path}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def get_session_factory(db_path: Path | None = None) -> sessionmaker:
    return sessionmaker(bind=get_engine(db_path), autoflush=False, autocommit=False, expire_on_commit=False)


TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_timestamp(moment: datetime) -> str:
    """Render an aware datetime in the fixed-width UTC form stored in every table."""
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def utcnow() -> str:
    return format_timestamp(datetime.now(timezone.utc))


SCHEMA_SQL = """\
-- ============================================================
-- MEMBERS
-- ============================================================
CREATE TABLE IF NOT EXISTS members (
    id            TEXT PRIMARY KEY,
    email         TEXT NOT NULL UNIQUE COLLATE NOCASE,
    password_hash TEXT NOT NULL,
    role          TEXT NOT NULL DEFAULT 'member' CHECK(role IN ('member','admin')),
    created_at    TEXT NOT NULL
);

-- ============================================================
-- AUTH THROTTLE
-- ============================================================
CREATE TABLE IF NOT EXISTS auth_throttle (
    key             TEXT PRIMARY KEY,
    failed_attempts INTEGER NOT NULL,
    last_failed_at  REAL NOT NULL
);

-- ============================================================
-- CATEGORIES
-- ============================================================
CREATE TABLE IF NOT EXISTS categories (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL UNIQUE COLLATE NOCASE,
    description TEXT,
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

-- ============================================================
-- DOCUMENTS
-- ============================================================
CREATE TABLE IF NOT EXISTS documents (
    id                TEXT PRIMARY KEY,
    stored_name       TEXT NOT NULL,
    original_name     TEXT NOT NULL,
    file_size_bytes   INTEGER NOT NULL CHECK(file_size_bytes > 0),
    content_type      TEXT NOT NULL,
    storage_key       TEXT NOT NULL,
    file_hash         TEXT NOT NULL,
    category_id       TEXT REFERENCES categories(id) ON DELETE RESTRICT,
    uploaded_by       TEXT NOT NULL,
    description       TEXT,
    security_metadata TEXT NOT NULL,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_documents_storage_key ON documents(storage_key);
CREATE INDEX IF NOT EXISTS idx_documents_category ON documents(category_id);
CREATE INDEX IF NOT EXISTS idx_documents_uploaded_by ON documents(uploaded_by);
CREATE INDEX IF NOT EXISTS idx_documents_content_type ON documents(content_type);
CREATE INDEX IF NOT EXISTS idx_documents_created ON documents(created_at);

-- ============================================================
-- TAGS
-- ============================================================
CREATE TABLE IF NOT EXISTS tags (
    id   TEXT PRIMARY KEY,
    name TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS document_tags (
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    tag_id      TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
    PRIMARY KEY (document_id, tag_id)
);

CREATE INDEX IF NOT EXISTS idx_document_tags_tag ON document_tags(tag_id);

-- ============================================================
-- AUDIT
-- ============================================================
CREATE TABLE IF NOT EXISTS audit_events (
    id           TEXT PRIMARY KEY,
    action       TEXT NOT NULL,
    outcome      TEXT NOT NULL CHECK(outcome IN ('success','failure')),
    user_id      TEXT,
    document_id  TEXT,
    storage_key  TEXT,
    filename     TEXT,
    size_bytes   INTEGER,
    content_type TEXT,
    stage        TEXT,
    error        TEXT,
    detail       TEXT,
    occurred_at  TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_action ON audit_events(action);
CREATE INDEX IF NOT EXISTS idx_audit_user ON audit_events(user_id);

-- ============================================================
-- FTS5
-- ============================================================
CREATE VIRTUAL TABLE IF NOT EXISTS documents_fts USING fts5(
    original_name, description,
    content='documents', content_rowid='rowid'
);
"""

FTS_TRIGGERS_SQL = """\
CREATE TRIGGER IF NOT EXISTS documents_ai AFTER INSERT ON documents BEGIN
    INSERT INTO documents_fts(rowid, original_name, description)
    VALUES (new.rowid, new.original_name, new.description);
END;

CREATE TRIGGER IF NOT EXISTS documents_ad AFTER DELETE ON documents BEGIN
    INSERT INTO documents_fts(documents_fts, rowid, original_name, description)
    VALUES ('delete', old.rowid, old.original_name, old.description);
END;

CREATE TRIGGER IF NOT EXISTS documents_au AFTER UPDATE ON documents BEGIN
    INSERT INTO documents_fts(documents_fts, rowid, original_name, description)
    VALUES ('delete', old.rowid, old.original_name, old.description);
    INSERT INTO documents_fts(rowid, original_name, description)
    VALUES (new.rowid, new.original_name, new.description);
END;
"""

DEFAULT_CATEGORIES = [
    ("Meeting Minutes", "Records of community meetings and decisions"),
    ("Bylaws", "Community bylaws and governing documents"),
    ("Maintenance", "Property maintenance and repair documents"),
    ("Financial", "Financial reports and budget documents"),
    ("Legal", "Legal documents and contracts"),
    ("General", "General community documents and announcements"),
]


def init_db(db_path: Path | None = None, seed_categories: bool = True):
    path = db_path or settings.db_path
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.executescript(SCHEMA_SQL)
    conn.executescript(FTS_TRIGGERS_SQL)
    if seed_categories:
        now = utcnow()
        conn.executemany(
            "INSERT OR IGNORE INTO categories (id, name, description, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?)",
            [(str(uuid.uuid4()), name, desc, now, now) for name, desc in DEFAULT_CATEGORIES],
        )
        conn.commit()
    conn.close()
