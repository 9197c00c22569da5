"""Course certificate and its content fingerprint."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class Certificate(BaseModel):
    """
    A completion certificate. The fingerprint fields are a tamper-evidence
    digest of the certificate content, not a ledger entry.
    """

    id: str
    user_id: str
    course_id: str
    issued_at: str                          # Stored verbatim; part of the hashed tuple
    verification_code: str
    blockchain_hash: Optional[str] = None
    blockchain_timestamp: Optional[datetime] = None

    # Denormalized on read
    student_name: Optional[str] = None
    course_title: Optional[str] = None
