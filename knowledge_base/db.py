"""Database initialization and helpers for the knowledge base.

SQLite database for storing:
- Uploaded documents and their passages (chunks) with embeddings
- Conversations and their ordered messages

Chunk row ids double as FAISS vector ids.
"""
import sqlite3
import json
from typing import Optional, List, Dict, Any, Sequence, Tuple
from datetime import datetime, timezone
import numpy as np
import structlog

from knowledge_base import config
from knowledge_base.models import Passage

logger = structlog.get_logger()

DB_PATH = config.DB_PATH


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def encode_embedding(embedding: Optional[Sequence[float]]) -> Optional[bytes]:
    if embedding is None:
        return None
    return np.asarray(embedding, dtype=np.float32).tobytes()


def decode_embedding(blob: Optional[bytes]) -> Optional[List[float]]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32).tolist()


def get_connection() -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def init_database() -> None:
    """Initialize the database schema.

    Creates tables if they don't exist:
    - documents: uploaded files
    - chunks: passages with optional embedding blobs
    - conversations / messages: chat history
    """
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                filename TEXT NOT NULL,
                file_type TEXT,
                uploaded_at TEXT NOT NULL,
                processed INTEGER NOT NULL DEFAULT 0,
                metadata_json TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                document_id TEXT NOT NULL,
                chunk_index INTEGER NOT NULL,
                content TEXT NOT NULL,
                embedding BLOB,
                created_at TEXT NOT NULL,
                UNIQUE(document_id, chunk_index)
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_document_id
            ON chunks(document_id)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                title TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                sources_json TEXT,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_conversation_id
            ON messages(conversation_id)
        """)

        conn.commit()
        logger.info("database_initialized", db_path=str(DB_PATH))

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Documents & chunks
# ---------------------------------------------------------------------------


def insert_document(
    document_id: str,
    filename: str,
    file_type: Optional[str],
    chunks: List[Tuple[str, Optional[List[float]]]],
    metadata: Optional[Dict[str, Any]] = None,
) -> List[int]:
    """Insert a document and its chunks in one transaction.

    Args:
        document_id: Document id
        filename: Original file name
        file_type: Declared content type
        chunks: (text, embedding) pairs in chunk order
        metadata: Optional additional metadata as dict

    Returns:
        Chunk row ids in chunk order
    """
    conn = get_connection()
    cursor = conn.cursor()
    created_at = _now()

    try:
        cursor.execute("""
            INSERT INTO documents (id, filename, file_type, uploaded_at, processed, metadata_json)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            document_id,
            filename,
            file_type,
            created_at,
            1,
            json.dumps(metadata) if metadata else None,
        ))

        chunk_ids = []
        for chunk_index, (content, embedding) in enumerate(chunks):
            cursor.execute("""
                INSERT INTO chunks (document_id, chunk_index, content, embedding, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                document_id,
                chunk_index,
                content,
                encode_embedding(embedding),
                created_at,
            ))
            chunk_ids.append(cursor.lastrowid)

        conn.commit()
        logger.info("document_inserted", document_id=document_id, chunk_count=len(chunk_ids))
        return chunk_ids

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("document_insert_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


_DOCUMENT_SELECT = """
    SELECT
        d.id, d.filename, d.file_type, d.uploaded_at, d.processed,
        (SELECT COUNT(*) FROM chunks c WHERE c.document_id = d.id) AS chunk_count
    FROM documents d
"""


def _document_row(row: sqlite3.Row) -> Dict[str, Any]:
    document = dict(row)
    document["processed"] = bool(document["processed"])
    return document


def get_document(document_id: str) -> Optional[Dict[str, Any]]:
    """Get a document with its chunk count, or None if not found."""
    conn = get_connection()
    try:
        row = conn.execute(_DOCUMENT_SELECT + " WHERE d.id = ?", (document_id,)).fetchone()
        return _document_row(row) if row else None
    finally:
        conn.close()


def list_documents() -> List[Dict[str, Any]]:
    """List all documents, most recent first."""
    conn = get_connection()
    try:
        rows = conn.execute(_DOCUMENT_SELECT + " ORDER BY d.uploaded_at DESC").fetchall()
        return [_document_row(row) for row in rows]
    finally:
        conn.close()


def delete_document(document_id: str) -> Optional[List[int]]:
    """Delete a document and its chunks.

    Returns:
        Ids of the deleted chunks, or None if the document doesn't exist
    """
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT id FROM documents WHERE id = ?", (document_id,))
        if cursor.fetchone() is None:
            return None

        cursor.execute("SELECT id FROM chunks WHERE document_id = ?", (document_id,))
        chunk_ids = [row["id"] for row in cursor.fetchall()]

        cursor.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
        cursor.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        conn.commit()

        logger.info("document_deleted", document_id=document_id, chunk_count=len(chunk_ids))
        return chunk_ids

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("document_delete_failed", error=str(e), document_id=document_id)
        raise
    finally:
        conn.close()


def get_chunks_by_ids(chunk_ids: List[int]) -> List[Passage]:
    """Retrieve embedded chunks by id as passages.

    Chunks without an embedding are never returned.
    """
    if not chunk_ids:
        return []

    conn = get_connection()

    try:
        placeholders = ",".join("?" * len(chunk_ids))
        rows = conn.execute(f"""
            SELECT id, document_id, chunk_index, content, embedding, created_at
            FROM chunks
            WHERE id IN ({placeholders}) AND embedding IS NOT NULL
        """, chunk_ids).fetchall()

        return [
            Passage(
                id=row["id"],
                document_id=row["document_id"],
                text=row["content"],
                chunk_index=row["chunk_index"],
                created_at=row["created_at"],
                embedding=decode_embedding(row["embedding"]),
            )
            for row in rows
        ]

    finally:
        conn.close()


def get_embedded_chunks() -> List[Tuple[int, List[float]]]:
    """Return (chunk id, embedding) for every embedded chunk."""
    conn = get_connection()
    try:
        rows = conn.execute(
            "SELECT id, embedding FROM chunks WHERE embedding IS NOT NULL ORDER BY id"
        ).fetchall()
        return [(row["id"], decode_embedding(row["embedding"])) for row in rows]
    finally:
        conn.close()


def get_chunk_count() -> int:
    """Get the total number of chunks in the database."""
    conn = get_connection()
    try:
        return conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Conversations & messages
# ---------------------------------------------------------------------------


def create_conversation(conversation_id: str, title: Optional[str] = None) -> Dict[str, Any]:
    """Insert a conversation row and return it."""
    conn = get_connection()
    created_at = _now()

    try:
        conn.execute(
            "INSERT INTO conversations (id, title, created_at) VALUES (?, ?, ?)",
            (conversation_id, title, created_at),
        )
        conn.commit()
        return {"id": conversation_id, "title": title, "created_at": created_at, "message_count": 0}

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("conversation_insert_failed", error=str(e))
        raise
    finally:
        conn.close()


_CONVERSATION_SELECT = """
    SELECT
        c.id, c.title, c.created_at,
        (SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id) AS message_count
    FROM conversations c
"""


def get_conversation(conversation_id: str) -> Optional[Dict[str, Any]]:
    conn = get_connection()
    try:
        row = conn.execute(
            _CONVERSATION_SELECT + " WHERE c.id = ?", (conversation_id,)
        ).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def list_conversations(limit: int = 50) -> List[Dict[str, Any]]:
    conn = get_connection()
    try:
        rows = conn.execute(
            _CONVERSATION_SELECT + " ORDER BY c.created_at DESC LIMIT ?", (limit,)
        ).fetchall()
        return [dict(row) for row in rows]
    finally:
        conn.close()


def delete_conversation(conversation_id: str) -> bool:
    """Delete a conversation and its messages. Returns False if not found."""
    conn = get_connection()
    cursor = conn.cursor()

    try:
        cursor.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation_id,))
        cursor.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        deleted = cursor.rowcount > 0
        conn.commit()
        return deleted

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("conversation_delete_failed", error=str(e), conversation_id=conversation_id)
        raise
    finally:
        conn.close()


def add_message(
    conversation_id: str,
    role: str,
    content: str,
    sources: Optional[List[Dict[str, Any]]] = None,
) -> int:
    """Append a message to a conversation. Returns the message id."""
    conn = get_connection()

    try:
        cursor = conn.execute("""
            INSERT INTO messages (conversation_id, role, content, sources_json, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (
            conversation_id,
            role,
            content,
            json.dumps(sources) if sources else None,
            _now(),
        ))
        conn.commit()
        return cursor.lastrowid

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("message_insert_failed", error=str(e), conversation_id=conversation_id)
        raise
    finally:
        conn.close()


def _message_row(row: sqlite3.Row) -> Dict[str, Any]:
    message = dict(row)
    sources_json = message.pop("sources_json")
    message["sources"] = json.loads(sources_json) if sources_json else []
    return message


def get_messages(conversation_id: str) -> List[Dict[str, Any]]:
    """All messages of a conversation in creation order."""
    conn = get_connection()
    try:
        rows = conn.execute("""
            SELECT id, conversation_id, role, content, sources_json, created_at
            FROM messages
            WHERE conversation_id = ?
            ORDER BY id
        """, (conversation_id,)).fetchall()
        return [_message_row(row) for row in rows]
    finally:
        conn.close()


def get_recent_messages(conversation_id: str, limit: int) -> List[Dict[str, Any]]:
    """The last ``limit`` messages of a conversation in creation order."""
    conn = get_connection()
    try:
        rows = conn.execute("""
            SELECT id, conversation_id, role, content, sources_json, created_at
            FROM messages
            WHERE conversation_id = ?
            ORDER BY id DESC
            LIMIT ?
        """, (conversation_id, limit)).fetchall()
        return [_message_row(row) for row in reversed(rows)]
    finally:
        conn.close()
