"""
Relational Store — the source of truth behind every handler.

Prototype: SQLite. Repositories in this package share one Database and
report their writes as RowChange events to registered listeners (the
realtime hub's row-change feed).
"""

import sqlite3
from typing import Callable, List, Optional

import structlog

from edusync.models.realtime import RowChange

logger = structlog.get_logger(__name__)

ChangeListener = Callable[[RowChange], None]

# Catalogue of achievements the threshold checks can award.
DEFAULT_ACHIEVEMENTS = [
    ("first-perfect-score", "Perfect Score", "Score 100% on a quiz", "quiz", 100),
    ("quiz-master", "Quiz Master", "Score 80% or more on five quizzes", "quiz", 250),
    ("first-course", "First Course", "Complete your first course", "course", 200),
    ("course-collector", "Course Collector", "Complete ten courses", "course", 1000),
    ("early-bird", "Early Bird", "Study before 8am", "engagement", 50),
]


class Database:
    """SQLite connection, schema and change-listener registry."""

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._listeners: List[ChangeListener] = []
        self._init_schema()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def _init_schema(self) -> None:
        """Create tables if they don't exist and seed the achievement catalogue."""
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS profiles (
                id TEXT PRIMARY KEY,
                email TEXT,
                full_name TEXT,
                xp INTEGER NOT NULL DEFAULT 0,
                level INTEGER NOT NULL DEFAULT 1
            );
            CREATE TABLE IF NOT EXISTS courses (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                category TEXT,
                level TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                instructor_id TEXT,
                is_published INTEGER NOT NULL DEFAULT 1
            );
            CREATE TABLE IF NOT EXISTS course_sections (
                id TEXT PRIMARY KEY,
                course_id TEXT NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                content TEXT,
                order_index INTEGER NOT NULL DEFAULT 0
            );
            CREATE TABLE IF NOT EXISTS enrollments (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                course_id TEXT NOT NULL,
                progress REAL NOT NULL DEFAULT 0,
                completed INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_enrollments_user ON enrollments(user_id);
            CREATE TABLE IF NOT EXISTS quiz_results (
                id TEXT PRIMARY KEY,
                enrollment_id TEXT NOT NULL,
                percentage REAL NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS achievements (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                category TEXT NOT NULL,
                xp_reward INTEGER NOT NULL DEFAULT 0
            );
            CREATE TABLE IF NOT EXISTS user_achievements (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                achievement_id TEXT NOT NULL,
                earned_at TEXT NOT NULL,
                UNIQUE (user_id, achievement_id)
            );
            CREATE TABLE IF NOT EXISTS notifications (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                message TEXT NOT NULL,
                type TEXT NOT NULL,
                read INTEGER NOT NULL DEFAULT 0,
                link TEXT,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id);
            CREATE TABLE IF NOT EXISTS course_certificates (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                course_id TEXT NOT NULL,
                issued_at TEXT NOT NULL,
                verification_code TEXT NOT NULL UNIQUE,
                blockchain_hash TEXT,
                blockchain_timestamp TEXT,
                UNIQUE (user_id, course_id)
            );
            CREATE TABLE IF NOT EXISTS session_bookings (
                id TEXT PRIMARY KEY,
                mentor_id TEXT NOT NULL,
                student_id TEXT NOT NULL,
                scheduled_at TEXT NOT NULL,
                duration_minutes INTEGER NOT NULL,
                price REAL NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS mentor_profiles (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL UNIQUE
            );
            CREATE TABLE IF NOT EXISTS mentor_presence (
                mentor_id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                is_online INTEGER NOT NULL,
                last_seen TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS group_chat_messages (
                id TEXT PRIMARY KEY,
                group_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                content TEXT NOT NULL,
                file_url TEXT,
                file_name TEXT,
                created_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_chat_group ON group_chat_messages(group_id);
            CREATE TABLE IF NOT EXISTS course_recommendations_cache (
                user_id TEXT PRIMARY KEY,
                recommended_courses TEXT NOT NULL,
                generated_at TEXT NOT NULL
            );
        """)
        self._conn.executemany(
            "INSERT OR IGNORE INTO achievements (id, name, description, category, xp_reward) "
            "VALUES (?, ?, ?, ?, ?)",
            DEFAULT_ACHIEVEMENTS,
        )
        self._conn.commit()

    # --- Change feed ---

    def add_change_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def emit_change(
        self, table: str, event: str, new: dict, old: Optional[dict] = None
    ) -> None:
        """Report a committed write to every listener."""
        change = RowChange(table=table, event=event, new=new, old=old or {})
        for listener in list(self._listeners):
            listener(change)

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
