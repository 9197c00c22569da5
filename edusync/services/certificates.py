"""
Certificate Service — issuing certificates and their content fingerprints.

The fingerprint is a SHA-256 digest of the certificate's identifying tuple.
It makes tampering with those fields detectable; it is not a ledger entry
and carries no immutability or consensus guarantee.

Behavioral Contract:
- compute_fingerprint() is a pure function of
  (certificateId, userId, courseId, issuedAt, verificationCode)
- register() stores the digest together with the current time, so the
  stored record changes on every call while the digest does not
- verify() never recomputes: it reports the stored digest as-is
"""

import hashlib
import json
import random
import string
import time
from datetime import datetime
from typing import Optional
from uuid import uuid4

import structlog

from edusync.errors import NotFoundError, ValidationError
from edusync.models.certificate import Certificate
from edusync.store.catalog import CatalogStore
from edusync.store.certificates import CertificateStore

logger = structlog.get_logger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def compute_fingerprint(certificate: Certificate) -> str:
    """SHA-256 hex digest over the compact JSON encoding of the identifying tuple."""
    payload = {
        "certificateId": certificate.id,
        "userId": certificate.user_id,
        "courseId": certificate.course_id,
        "issuedAt": certificate.issued_at,
        "verificationCode": certificate.verification_code,
    }
    encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def generate_verification_code(rng: Optional[random.Random] = None) -> str:
    """CERT-<epoch ms>-<9 base36 chars>, upper-cased."""
    rng = rng or random.SystemRandom()
    suffix = "".join(rng.choice(_BASE36) for _ in range(9))
    return f"CERT-{int(time.time() * 1000)}-{suffix}".upper()


class CertificateService:
    def __init__(self, certificates: CertificateStore, catalog: CatalogStore):
        self.certificates = certificates
        self.catalog = catalog

    def handle(self, certificate_id: Optional[str], action: Optional[str]) -> dict:
        """Dispatch a register/verify request."""
        if not certificate_id:
            raise ValidationError("certificateId is required")
        if action == "register":
            return self.register(certificate_id)
        if action == "verify":
            return self.verify(certificate_id)
        raise ValidationError("Invalid action")

    def _load(self, certificate_id: str) -> Certificate:
        certificate = self.certificates.get(certificate_id)
        if certificate is None:
            raise NotFoundError("Certificate not found")
        return certificate

    def register(self, certificate_id: str) -> dict:
        certificate = self._load(certificate_id)
        digest = compute_fingerprint(certificate)
        registered_at = datetime.utcnow()
        self.certificates.set_fingerprint(certificate.id, digest, registered_at)
        logger.info("certificate_fingerprint_registered", certificate_id=certificate.id)
        timestamp = registered_at.isoformat()
        return {
            "success": True,
            "hash": digest,
            "timestamp": timestamp,
            # Earlier clients read the blockchain-prefixed keys
            "blockchainHash": digest,
            "blockchainTimestamp": timestamp,
            "message": "Certificate fingerprint registered",
        }

    def verify(self, certificate_id: str) -> dict:
        certificate = self._load(certificate_id)
        if not certificate.blockchain_hash:
            return {
                "verified": False,
                "message": "Certificate has no registered fingerprint",
            }
        timestamp = (
            certificate.blockchain_timestamp.isoformat()
            if certificate.blockchain_timestamp else None
        )
        return {
            "verified": True,
            "hash": certificate.blockchain_hash,
            "timestamp": timestamp,
            "blockchainHash": certificate.blockchain_hash,
            "blockchainTimestamp": timestamp,
            "message": "Certificate authenticity verified",
            "certificate": {
                "id": certificate.id,
                "studentName": certificate.student_name,
                "courseName": certificate.course_title,
                "issuedAt": certificate.issued_at,
                "verificationCode": certificate.verification_code,
            },
        }

    def issue(self, user_id: str, course_id: Optional[str]) -> Certificate:
        """Certificate for a completed course; returns the existing one if issued."""
        if not course_id:
            raise ValidationError("courseId is required")
        if self.catalog.get_completed_enrollment(user_id, course_id) is None:
            raise NotFoundError("Course not completed")

        existing = self.certificates.find_for_course(user_id, course_id)
        if existing is not None:
            return existing

        certificate = Certificate(
            id=str(uuid4()),
            user_id=user_id,
            course_id=course_id,
            issued_at=datetime.utcnow().isoformat(),
            verification_code=generate_verification_code(),
        )
        self.certificates.insert(certificate)
        logger.info(
            "certificate_issued",
            certificate_id=certificate.id, user_id=user_id, course_id=course_id,
        )
        return self.certificates.get(certificate.id)
