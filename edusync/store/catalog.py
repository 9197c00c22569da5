"""
Catalog Store — profiles, courses, enrollments, quiz results, mentor data,
bookings and the recommendation cache.

Rows are returned as plain dicts; tags are decoded from JSON.
"""

import json
import sqlite3
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from edusync.store.database import Database

XP_PER_LEVEL = 1000


def _course_row(row: sqlite3.Row) -> dict:
    data = dict(row)
    data["tags"] = json.loads(data.get("tags") or "[]")
    data["is_published"] = bool(data.get("is_published"))
    return data


class CatalogStore:
    def __init__(self, db: Database):
        self._db = db

    # --- Profiles ---

    def upsert_profile(
        self, user_id: str, email: Optional[str] = None, full_name: Optional[str] = None
    ) -> dict:
        self._db.conn.execute(
            """
            INSERT INTO profiles (id, email, full_name) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                email = COALESCE(excluded.email, profiles.email),
                full_name = COALESCE(excluded.full_name, profiles.full_name)
            """,
            (user_id, email, full_name),
        )
        self._db.conn.commit()
        return self.get_profile(user_id)

    def get_profile(self, user_id: str) -> Optional[dict]:
        row = self._db.conn.execute(
            "SELECT * FROM profiles WHERE id = ?", (user_id,)
        ).fetchone()
        return dict(row) if row else None

    def add_xp(self, user_id: str, xp: int) -> Tuple[int, int]:
        """Add XP to a profile and recompute the level. Returns (xp, level)."""
        profile = self.get_profile(user_id) or self.upsert_profile(user_id)
        new_xp = (profile.get("xp") or 0) + xp
        new_level = new_xp // XP_PER_LEVEL + 1
        self._db.conn.execute(
            "UPDATE profiles SET xp = ?, level = ? WHERE id = ?",
            (new_xp, new_level, user_id),
        )
        self._db.conn.commit()
        return new_xp, new_level

    # --- Courses ---

    def add_course(
        self,
        title: str,
        description: str = "",
        category: Optional[str] = None,
        level: Optional[str] = None,
        tags: Iterable[str] = (),
        instructor_id: Optional[str] = None,
        is_published: bool = True,
        course_id: Optional[str] = None,
    ) -> dict:
        course_id = course_id or str(uuid4())
        self._db.conn.execute(
            """
            INSERT INTO courses (id, title, description, category, level, tags,
                                 instructor_id, is_published)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                course_id, title, description, category, level,
                json.dumps(list(tags)), instructor_id, int(is_published),
            ),
        )
        self._db.conn.commit()
        return self.get_course(course_id)

    def get_course(self, course_id: str) -> Optional[dict]:
        row = self._db.conn.execute(
            "SELECT * FROM courses WHERE id = ?", (course_id,)
        ).fetchone()
        return _course_row(row) if row else None

    def get_courses(self, course_ids: List[str]) -> List[dict]:
        """Courses in the order the ids were given; unknown ids are skipped."""
        if not course_ids:
            return []
        placeholders = ",".join("?" for _ in course_ids)
        rows = self._db.conn.execute(
            f"SELECT * FROM courses WHERE id IN ({placeholders})", tuple(course_ids)
        ).fetchall()
        by_id = {r["id"]: _course_row(r) for r in rows}
        return [by_id[cid] for cid in course_ids if cid in by_id]

    def list_published_courses(self, exclude_ids: Iterable[str] = ()) -> List[dict]:
        excluded = set(exclude_ids)
        rows = self._db.conn.execute(
            "SELECT id, title, description, category, level, tags, is_published "
            "FROM courses WHERE is_published = 1 ORDER BY rowid"
        ).fetchall()
        return [_course_row(r) for r in rows if r["id"] not in excluded]

    def add_section(
        self,
        course_id: str,
        title: str,
        description: Optional[str] = None,
        content: Optional[str] = None,
        order_index: int = 0,
    ) -> str:
        section_id = str(uuid4())
        self._db.conn.execute(
            """
            INSERT INTO course_sections (id, course_id, title, description, content, order_index)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (section_id, course_id, title, description, content, order_index),
        )
        self._db.conn.commit()
        return section_id

    def list_sections(self, course_id: str) -> List[dict]:
        rows = self._db.conn.execute(
            "SELECT title, description, content FROM course_sections "
            "WHERE course_id = ? ORDER BY order_index",
            (course_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    # --- Enrollments and quiz results ---

    def enroll(
        self,
        user_id: str,
        course_id: str,
        completed: bool = False,
        progress: float = 0.0,
    ) -> str:
        enrollment_id = str(uuid4())
        self._db.conn.execute(
            """
            INSERT INTO enrollments (id, user_id, course_id, progress, completed, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                enrollment_id, user_id, course_id, progress, int(completed),
                datetime.utcnow().isoformat(),
            ),
        )
        self._db.conn.commit()
        return enrollment_id

    def complete_enrollment(self, enrollment_id: str) -> None:
        self._db.conn.execute(
            "UPDATE enrollments SET completed = 1, progress = 100, updated_at = ? WHERE id = ?",
            (datetime.utcnow().isoformat(), enrollment_id),
        )
        self._db.conn.commit()

    def get_completed_enrollment(self, user_id: str, course_id: str) -> Optional[dict]:
        row = self._db.conn.execute(
            "SELECT * FROM enrollments WHERE user_id = ? AND course_id = ? AND completed = 1",
            (user_id, course_id),
        ).fetchone()
        return dict(row) if row else None

    def count_completed_enrollments(self, user_id: str) -> int:
        row = self._db.conn.execute(
            "SELECT COUNT(*) AS cnt FROM enrollments WHERE user_id = ? AND completed = 1",
            (user_id,),
        ).fetchone()
        return row["cnt"]

    def list_enrollments(self, user_id: str) -> List[dict]:
        """Enrollments joined with the course fields the recommender needs."""
        rows = self._db.conn.execute(
            """
            SELECT e.id, e.course_id, e.progress, e.completed,
                   c.category, c.level, c.tags
            FROM enrollments e JOIN courses c ON c.id = e.course_id
            WHERE e.user_id = ? ORDER BY e.rowid
            """,
            (user_id,),
        ).fetchall()
        result = []
        for r in rows:
            data = dict(r)
            data["completed"] = bool(data["completed"])
            data["tags"] = json.loads(data.get("tags") or "[]")
            result.append(data)
        return result

    def record_quiz_result(self, enrollment_id: str, percentage: float) -> str:
        result_id = str(uuid4())
        self._db.conn.execute(
            "INSERT INTO quiz_results (id, enrollment_id, percentage, created_at) "
            "VALUES (?, ?, ?, ?)",
            (result_id, enrollment_id, percentage, datetime.utcnow().isoformat()),
        )
        self._db.conn.commit()
        return result_id

    def count_quiz_results_at_least(self, enrollment_id: str, threshold: float) -> int:
        row = self._db.conn.execute(
            "SELECT COUNT(*) AS cnt FROM quiz_results WHERE enrollment_id = ? AND percentage >= ?",
            (enrollment_id, threshold),
        ).fetchone()
        return row["cnt"]

    def quiz_percentages(self, enrollment_ids: List[str]) -> List[float]:
        if not enrollment_ids:
            return []
        placeholders = ",".join("?" for _ in enrollment_ids)
        rows = self._db.conn.execute(
            f"SELECT percentage FROM quiz_results WHERE enrollment_id IN ({placeholders})",
            tuple(enrollment_ids),
        ).fetchall()
        return [r["percentage"] for r in rows]

    # --- Recommendations ---

    def cache_recommendations(self, user_id: str, courses: List[dict]) -> None:
        self._db.conn.execute(
            """
            INSERT INTO course_recommendations_cache (user_id, recommended_courses, generated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                recommended_courses = excluded.recommended_courses,
                generated_at = excluded.generated_at
            """,
            (user_id, json.dumps(courses), datetime.utcnow().isoformat()),
        )
        self._db.conn.commit()

    def cached_recommendations(self, user_id: str) -> Optional[List[dict]]:
        row = self._db.conn.execute(
            "SELECT recommended_courses FROM course_recommendations_cache WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        return json.loads(row["recommended_courses"]) if row else None

    # --- Mentors and bookings ---

    def add_mentor_profile(self, user_id: str) -> str:
        mentor_id = str(uuid4())
        self._db.conn.execute(
            "INSERT INTO mentor_profiles (id, user_id) VALUES (?, ?)", (mentor_id, user_id)
        )
        self._db.conn.commit()
        return mentor_id

    def get_mentor_profile_id(self, user_id: str) -> Optional[str]:
        row = self._db.conn.execute(
            "SELECT id FROM mentor_profiles WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row["id"] if row else None

    def upsert_mentor_presence(self, mentor_id: str, user_id: str, is_online: bool) -> dict:
        now = datetime.utcnow().isoformat()
        self._db.conn.execute(
            """
            INSERT INTO mentor_presence (mentor_id, user_id, is_online, last_seen, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(mentor_id) DO UPDATE SET
                is_online = excluded.is_online,
                last_seen = excluded.last_seen,
                updated_at = excluded.updated_at
            """,
            (mentor_id, user_id, int(is_online), now, now),
        )
        self._db.conn.commit()
        row = {
            "mentor_id": mentor_id,
            "user_id": user_id,
            "is_online": is_online,
            "last_seen": now,
        }
        self._db.emit_change("mentor_presence", "UPDATE", row)
        return row

    def get_mentor_presence(self, mentor_id: str) -> Optional[dict]:
        row = self._db.conn.execute(
            "SELECT * FROM mentor_presence WHERE mentor_id = ?", (mentor_id,)
        ).fetchone()
        if not row:
            return None
        data = dict(row)
        data["is_online"] = bool(data["is_online"])
        return data

    def create_booking(
        self,
        mentor_id: str,
        student_id: str,
        scheduled_at: datetime,
        price: float,
        duration_minutes: int = 60,
        status: str = "pending",
    ) -> dict:
        booking = {
            "id": str(uuid4()),
            "mentor_id": mentor_id,
            "student_id": student_id,
            "scheduled_at": scheduled_at.isoformat(),
            "duration_minutes": duration_minutes,
            "price": price,
            "status": status,
            "created_at": datetime.utcnow().isoformat(),
        }
        self._db.conn.execute(
            """
            INSERT INTO session_bookings (id, mentor_id, student_id, scheduled_at,
                                          duration_minutes, price, status, created_at)
            VALUES (:id, :mentor_id, :student_id, :scheduled_at,
                    :duration_minutes, :price, :status, :created_at)
            """,
            booking,
        )
        self._db.conn.commit()
        return booking

    def list_bookings(self, student_id: str) -> List[Dict]:
        rows = self._db.conn.execute(
            "SELECT * FROM session_bookings WHERE student_id = ? ORDER BY rowid",
            (student_id,),
        ).fetchall()
        return [dict(r) for r in rows]
