"""
Brain Store — the agent's persistence layer.

Everything the consciousness loop writes back lands here: tasks it wants
done, knowledge it picked up, a log of each stretch of thinking, small bits
of named state (``status``, ``stats``, ``last_thought_at``), and the topics
it has recently been talking about.

The loop talks to storage only through the ``Database`` protocol, so tests
and alternative backends can stand in for ``BrainStore``.
"""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

import structlog

from spirit.types import KnowledgeEntry, LearningLog, Task

logger = structlog.get_logger(__name__)

PENDING_STATUSES = ("pending", "approved")

SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT DEFAULT '',
    priority INTEGER DEFAULT 0,
    status TEXT DEFAULT 'pending',
    requires_approval INTEGER DEFAULT 0,
    metadata TEXT DEFAULT '{}',
    result TEXT,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_priority ON tasks(priority);

CREATE TABLE IF NOT EXISTS knowledge (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    source TEXT DEFAULT '',
    confidence REAL DEFAULT 0.5,
    tags TEXT DEFAULT '[]',
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_knowledge_category ON knowledge(category);

CREATE TABLE IF NOT EXISTS learning_logs (
    log_id INTEGER PRIMARY KEY AUTOINCREMENT,
    topic TEXT NOT NULL,
    summary TEXT DEFAULT '',
    source TEXT DEFAULT '',
    insights TEXT DEFAULT '[]',
    questions_generated TEXT DEFAULT '[]',
    outcomes TEXT DEFAULT '[]',
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    description TEXT DEFAULT '',
    updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS topics (
    title TEXT PRIMARY KEY,
    updated_at REAL NOT NULL
);
"""


@runtime_checkable
class Database(Protocol):
    """Storage operations the consciousness loop depends on."""

    async def get_pending_tasks(self, limit: int = 10) -> list[Task]: ...

    async def create_task(self, task: Task) -> Optional[str]: ...

    async def update_task_status(
        self, task_id: str, status: str, result: Any = None,
    ) -> None: ...

    async def save_learning_log(self, log: LearningLog) -> None: ...

    async def save_knowledge(self, entry: KnowledgeEntry) -> Optional[str]: ...

    async def get_state(self, key: str) -> Any: ...

    async def set_state(self, key: str, value: Any, description: str = "") -> None: ...

    async def count_knowledge(self) -> int: ...

    async def get_recent_topics(self, limit: int = 10) -> list[str]: ...

    async def record_topic(self, title: str) -> None: ...


class BrainStore:
    """
    SQLite-backed ``Database``.

    The store uses synchronous SQLite behind async methods. Each call is a
    short local transaction, so it never holds the event loop for long.
    """

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None
        logger.info("brain_store.initializing", path=str(self._db_path))

    def initialize(self) -> None:
        """Create database connection and ensure schema exists."""
        if self._conn is not None:
            logger.debug("brain_store.already_initialized", path=str(self._db_path))
            return
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        logger.info("brain_store.initialized", path=str(self._db_path))

    def _require_connection(self) -> sqlite3.Connection:
        """Return an initialized SQLite connection or raise a clear error."""
        if self._conn is None:
            raise RuntimeError("BrainStore is not initialized. Call initialize() first.")
        return self._conn

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def create_task(self, task: Task) -> Optional[str]:
        conn = self._require_connection()
        task_id = task.id or uuid.uuid4().hex
        now = time.time()
        conn.execute(
            """INSERT INTO tasks
               (id, type, title, description, priority, status,
                requires_approval, metadata, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                task_id,
                task.type,
                task.title,
                task.description,
                int(task.priority),
                task.status,
                int(bool(task.requires_approval)),
                json.dumps(task.metadata, ensure_ascii=False),
                now,
                now,
            ),
        )
        conn.commit()
        task.id = task_id
        logger.debug("brain_store.task_created", task_id=task_id, type=task.type)
        return task_id

    async def get_pending_tasks(self, limit: int = 10) -> list[Task]:
        """Tasks still waiting to be worked, highest priority first."""
        conn = self._require_connection()
        placeholders = ",".join("?" for _ in PENDING_STATUSES)
        rows = conn.execute(
            f"""SELECT * FROM tasks WHERE status IN ({placeholders})
                ORDER BY priority DESC, created_at ASC LIMIT ?""",
            (*PENDING_STATUSES, int(limit)),
        ).fetchall()
        return [self._row_to_task(row) for row in rows]

    async def update_task_status(self, task_id: str, status: str, result: Any = None) -> None:
        conn = self._require_connection()
        conn.execute(
            "UPDATE tasks SET status = ?, result = ?, updated_at = ? WHERE id = ?",
            (
                status,
                json.dumps(result, ensure_ascii=False, default=str) if result is not None else None,
                time.time(),
                task_id,
            ),
        )
        conn.commit()

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=row["id"],
            type=row["type"],
            title=row["title"],
            description=row["description"] or "",
            priority=int(row["priority"] or 0),
            status=row["status"],
            requires_approval=bool(row["requires_approval"]),
            metadata=json.loads(row["metadata"] or "{}"),
        )

    # -------------------------------------------------------------------------
    # Knowledge and learning
    # -------------------------------------------------------------------------

    async def save_knowledge(self, entry: KnowledgeEntry) -> Optional[str]:
        conn = self._require_connection()
        entry_id = entry.id or uuid.uuid4().hex
        conn.execute(
            """INSERT OR REPLACE INTO knowledge
               (id, category, title, content, source, confidence, tags, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                entry_id,
                entry.category,
                entry.title,
                entry.content,
                entry.source,
                float(entry.confidence),
                json.dumps(entry.tags, ensure_ascii=False),
                time.time(),
            ),
        )
        conn.commit()
        entry.id = entry_id
        return entry_id

    async def count_knowledge(self) -> int:
        conn = self._require_connection()
        row = conn.execute("SELECT COUNT(*) FROM knowledge").fetchone()
        return int(row[0]) if row else 0

    async def search_knowledge(self, query: str, category: Optional[str] = None) -> list[KnowledgeEntry]:
        conn = self._require_connection()
        pattern = f"%{query}%"
        sql = "SELECT * FROM knowledge WHERE (title LIKE ? OR content LIKE ?)"
        params: list[Any] = [pattern, pattern]
        if category:
            sql += " AND category = ?"
            params.append(category)
        sql += " ORDER BY confidence DESC LIMIT 10"
        rows = conn.execute(sql, params).fetchall()
        return [
            KnowledgeEntry(
                id=row["id"],
                category=row["category"],
                title=row["title"],
                content=row["content"],
                source=row["source"] or "",
                confidence=float(row["confidence"]),
                tags=json.loads(row["tags"] or "[]"),
            )
            for row in rows
        ]

    async def save_learning_log(self, log: LearningLog) -> None:
        conn = self._require_connection()
        conn.execute(
            """INSERT INTO learning_logs
               (topic, summary, source, insights, questions_generated, outcomes, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                log.topic,
                log.summary,
                log.source,
                json.dumps(log.insights, ensure_ascii=False),
                json.dumps(log.questions_generated, ensure_ascii=False),
                json.dumps(log.outcomes, ensure_ascii=False),
                time.time(),
            ),
        )
        conn.commit()

    async def load_learning_logs(self, limit: int = 20) -> list[LearningLog]:
        conn = self._require_connection()
        rows = conn.execute(
            "SELECT * FROM learning_logs ORDER BY log_id DESC LIMIT ?", (int(limit),),
        ).fetchall()
        return [
            LearningLog(
                topic=row["topic"],
                summary=row["summary"] or "",
                source=row["source"] or "",
                insights=json.loads(row["insights"] or "[]"),
                questions_generated=json.loads(row["questions_generated"] or "[]"),
                outcomes=json.loads(row["outcomes"] or "[]"),
            )
            for row in rows
        ]

    # -------------------------------------------------------------------------
    # Named state
    # -------------------------------------------------------------------------

    async def get_state(self, key: str) -> Any:
        conn = self._require_connection()
        row = conn.execute("SELECT value FROM state WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return json.loads(row["value"])

    async def set_state(self, key: str, value: Any, description: str = "") -> None:
        conn = self._require_connection()
        conn.execute(
            """INSERT INTO state (key, value, description, updated_at) VALUES (?, ?, ?, ?)
               ON CONFLICT(key) DO UPDATE SET
                   value = excluded.value,
                   description = CASE WHEN excluded.description != ''
                                      THEN excluded.description ELSE state.description END,
                   updated_at = excluded.updated_at""",
            (key, json.dumps(value, ensure_ascii=False, default=str), description, time.time()),
        )
        conn.commit()

    # -------------------------------------------------------------------------
    # Topics
    # -------------------------------------------------------------------------

    async def record_topic(self, title: str) -> None:
        title = (title or "").strip()
        if not title:
            return
        conn = self._require_connection()
        conn.execute(
            """INSERT INTO topics (title, updated_at) VALUES (?, ?)
               ON CONFLICT(title) DO UPDATE SET updated_at = excluded.updated_at""",
            (title, time.time()),
        )
        conn.commit()

    async def get_recent_topics(self, limit: int = 10) -> list[str]:
        conn = self._require_connection()
        rows = conn.execute(
            "SELECT title FROM topics ORDER BY updated_at DESC, rowid DESC LIMIT ?",
            (int(limit),),
        ).fetchall()
        return [row["title"] for row in rows]

    def stats(self) -> dict[str, Any]:
        conn = self._require_connection()
        counts = {}
        for table in ("tasks", "knowledge", "learning_logs", "topics"):
            counts[table] = int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
        return counts
