"""MessageStore: DuckDB-backed persistence for relayed messages."""
import logging
from datetime import timezone
from typing import List, Optional

import duckdb

from chatrelay.errors import MessagePersistenceError

from .schemas import MessageCreate, MessageRecord

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    id          VARCHAR PRIMARY KEY,
    sender      VARCHAR,
    recipient   VARCHAR NOT NULL,
    text        VARCHAR,
    file        VARCHAR,
    created_at  TIMESTAMP NOT NULL
)
"""

_INDEX = "CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages(sender, recipient)"

_COLUMNS = "id, sender, recipient, text, file, created_at"


class MessageStore:
    """Singleton store for message records.

    Timestamps are kept as naive UTC in DuckDB and returned timezone-aware.
    Each operation runs on its own cursor so connections served from
    different threads do not share one.
    """

    _instance: Optional["MessageStore"] = None
    _default_db_path: str = "messages.duckdb"

    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path or self._default_db_path
        self._conn = duckdb.connect(self._db_path)
        self._conn.execute(_CREATE_TABLE)
        self._conn.execute(_INDEX)
        logger.info("[MessageStore] Initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None) -> "MessageStore":
        if cls._instance is None:
            cls._instance = cls(db_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
        cls._instance = None

    def close(self) -> None:
        self._conn.close()

    async def create(self, message: MessageCreate) -> MessageRecord:
        """Persist a message and return it with its generated ID.

        Raises:
            MessagePersistenceError: If the insert fails.
        """
        record = MessageRecord(**message.model_dump())
        created_at = record.createdAt.astimezone(timezone.utc).replace(tzinfo=None)
        try:
            self._conn.cursor().execute(
                f"INSERT INTO messages ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                [record.id, record.sender, record.to, record.text, record.file, created_at],
            )
        except duckdb.Error as e:
            raise MessagePersistenceError(str(e), operation="create") from e
        return record

    def find_conversation(self, user_a: str, user_b: str) -> List[MessageRecord]:
        """Messages exchanged between two users, oldest first.

        Raises:
            MessagePersistenceError: If the query fails.
        """
        participants = [user_a, user_b]
        try:
            rows = self._conn.cursor().execute(
                f"""
                SELECT {_COLUMNS} FROM messages
                WHERE sender IN (?, ?) AND recipient IN (?, ?)
                ORDER BY created_at ASC
                """,
                participants + participants,
            ).fetchall()
        except duckdb.Error as e:
            raise MessagePersistenceError(str(e), operation="find") from e
        return [self._row_to_record(r) for r in rows]

    def count(self) -> int:
        """Number of stored messages."""
        return self._conn.cursor().execute("SELECT COUNT(*) FROM messages").fetchone()[0]

    @staticmethod
    def _row_to_record(row) -> MessageRecord:
        return MessageRecord(
            id=row[0],
            sender=row[1],
            to=row[2],
            text=row[3],
            file=row[4],
            createdAt=row[5].replace(tzinfo=timezone.utc),
        )
