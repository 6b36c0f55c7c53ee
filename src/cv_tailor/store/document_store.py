"""SQLite store for CV documents and their tailored variants."""

from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime
from pathlib import Path

from cv_tailor.errors import DocumentNotFoundError, VariantExistsError
from cv_tailor.models.document import CvDocument

DEFAULT_DB_PATH = Path.home() / ".cv-tailor" / "cv.db"


class SqliteDocumentStore:
    """Documents are stored as JSON, one row each.

    A variant row carries the ref of its source document and the context key
    (e.g. a job application id) it was tailored for. One variant per user and
    context is enforced by check-then-insert, not by a unique index, so two
    simultaneous submissions can both succeed.
    """

    def __init__(self, db_path: str | Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    ref TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT,
                    source_ref TEXT,
                    context_key TEXT,
                    document_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_documents_variant "
                "ON documents (user_id, context_key)"
            )

    def create_document(self, user_id: str, document: CvDocument, name: str | None = None) -> str:
        """Store a new master document and return its ref."""
        ref = uuid.uuid4().hex
        self._insert(ref, user_id, document, name=name)
        return ref

    def load_document(self, ref: str) -> CvDocument:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT document_json FROM documents WHERE ref = ?", (ref,)
            ).fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {ref} not found")
        return CvDocument.model_validate_json(row[0])

    def save_document(self, ref: str, document: CvDocument) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE documents SET document_json = ?, updated_at = ? WHERE ref = ?",
                (document.model_dump_json(), datetime.now().isoformat(), ref),
            )
            if cursor.rowcount == 0:
                raise DocumentNotFoundError(f"Document {ref} not found")

    def find_variant(self, user_id: str, context_key: str) -> str | None:
        """Ref of the user's variant for this context, if any."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT ref FROM documents WHERE user_id = ? AND context_key = ? LIMIT 1",
                (user_id, context_key),
            ).fetchone()
        return row[0] if row else None

    def create_variant(
        self,
        user_id: str,
        context_key: str,
        document: CvDocument,
        *,
        source_ref: str,
        name: str | None = None,
    ) -> str:
        """Insert a variant unless one already exists for (user, context).

        Raises:
            VariantExistsError: a variant for this context was found.
        """
        existing = self.find_variant(user_id, context_key)
        if existing:
            raise VariantExistsError("A tailored CV already exists for this context", existing)
        ref = uuid.uuid4().hex
        self._insert(ref, user_id, document, name=name, source_ref=source_ref, context_key=context_key)
        return ref

    def list_documents(self, user_id: str) -> list[dict]:
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT ref, name, source_ref, context_key, updated_at
                   FROM documents WHERE user_id = ? ORDER BY updated_at DESC""",
                (user_id,),
            ).fetchall()
        keys = ("ref", "name", "source_ref", "context_key", "updated_at")
        return [dict(zip(keys, row)) for row in rows]

    def _insert(
        self,
        ref: str,
        user_id: str,
        document: CvDocument,
        *,
        name: str | None = None,
        source_ref: str | None = None,
        context_key: str | None = None,
    ) -> None:
        with self._connect() as conn:
            conn.execute(
                """INSERT INTO documents
                   (ref, user_id, name, source_ref, context_key, document_json, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (
                    ref,
                    user_id,
                    name,
                    source_ref,
                    context_key,
                    document.model_dump_json(),
                    datetime.now().isoformat(),
                ),
            )
