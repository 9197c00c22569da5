"""Certificate Store — issued certificates and their content fingerprints."""

import sqlite3
from datetime import datetime
from typing import Optional

from edusync.models.certificate import Certificate
from edusync.store.database import Database


class CertificateStore:
    def __init__(self, db: Database):
        self._db = db

    def insert(self, certificate: Certificate) -> Certificate:
        self._db.conn.execute(
            """
            INSERT INTO course_certificates (id, user_id, course_id, issued_at, verification_code)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                certificate.id,
                certificate.user_id,
                certificate.course_id,
                certificate.issued_at,
                certificate.verification_code,
            ),
        )
        self._db.conn.commit()
        return certificate

    def _deserialize(self, row: sqlite3.Row) -> Certificate:
        stamp = row["blockchain_timestamp"]
        return Certificate(
            id=row["id"],
            user_id=row["user_id"],
            course_id=row["course_id"],
            issued_at=row["issued_at"],
            verification_code=row["verification_code"],
            blockchain_hash=row["blockchain_hash"],
            blockchain_timestamp=datetime.fromisoformat(stamp) if stamp else None,
            student_name=row["student_name"],
            course_title=row["course_title"],
        )

    _SELECT = """
        SELECT c.*, p.full_name AS student_name, co.title AS course_title
        FROM course_certificates c
        LEFT JOIN profiles p ON p.id = c.user_id
        LEFT JOIN courses co ON co.id = c.course_id
    """

    def get(self, certificate_id: str) -> Optional[Certificate]:
        """Certificate with student name and course title filled in."""
        row = self._db.conn.execute(
            self._SELECT + " WHERE c.id = ?", (certificate_id,)
        ).fetchone()
        return self._deserialize(row) if row else None

    def find_for_course(self, user_id: str, course_id: str) -> Optional[Certificate]:
        row = self._db.conn.execute(
            self._SELECT + " WHERE c.user_id = ? AND c.course_id = ?",
            (user_id, course_id),
        ).fetchone()
        return self._deserialize(row) if row else None

    def set_fingerprint(
        self, certificate_id: str, digest: str, timestamp: datetime
    ) -> None:
        self._db.conn.execute(
            "UPDATE course_certificates SET blockchain_hash = ?, blockchain_timestamp = ? "
            "WHERE id = ?",
            (digest, timestamp.isoformat(), certificate_id),
        )
        self._db.conn.commit()
