"""
Certificate identity: identifier generation, content hashing, issuance and
the download-time synchronisation with the secondary verification store.
"""
import hashlib
import logging
import re
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional

from errors import ConstraintViolation, CertificateServiceError, ValidationError
from secondary_store import SecondaryCertificateRecord
from utils import safe_parse_date

CERTIFICATE_ID_PREFIX = 'WS'
CERTIFICATE_ID_PATTERN = re.compile(r'^WS-\d{4}-[0-9A-F]{6}$')
HASH_PATTERN = re.compile(r'^[0-9a-f]{64}$')
DEFAULT_MAX_ATTEMPTS = 5


def generate_certificate_id() -> str:
    """Return a new identifier like WS-2025-3FA9C1 (year + 6 uppercase hex chars)."""
    year = datetime.now(UTC).year
    return f"{CERTIFICATE_ID_PREFIX}-{year}-{secrets.token_hex(3).upper()}"


def _date_string(value) -> str:
    parsed = safe_parse_date(value)
    if parsed is None:
        return '' if value is None else str(value)
    return parsed.isoformat()


def compute_certificate_hash(holder_name, course_title, completion_date, certificate_id) -> str:
    """SHA-256 over `name|courseTitle|completionDate|certificateId`, lowercase hex."""
    payload = '|'.join([
        holder_name or '',
        course_title or '',
        _date_string(completion_date),
        certificate_id or '',
    ])
    return hashlib.sha256(payload.encode('utf-8')).hexdigest()


def expected_hash(certificate, user, course) -> str:
    return compute_certificate_hash(user.name, course.title, certificate.completion_date, certificate.certificate_id)


def issue_certificate(storage, user, course, completion_date, city=None, max_attempts=DEFAULT_MAX_ATTEMPTS):
    """Mint an identifier, hash the certificate and persist it.

    Identifier collisions reported by the store are retried with a fresh
    identifier up to `max_attempts` times; any other constraint error propagates.
    """
    completion = safe_parse_date(completion_date)
    if completion is None:
        raise ValidationError('Invalid certificate data',
                              fields={'completionDate': 'Completion date must be YYYY-MM-DD'})
    last_error = None
    for attempt in range(1, max(1, max_attempts) + 1):
        certificate_id = generate_certificate_id()
        cert_hash = compute_certificate_hash(user.name, course.title, completion, certificate_id)
        try:
            cert = storage.create_certificate({
                'certificate_id': certificate_id,
                'user_id': user.id,
                'course_id': course.id,
                'completion_date': completion,
                'city': city,
                'hash': cert_hash,
            })
        except ConstraintViolation as e:
            if e.field != 'certificateId':
                raise
            last_error = e
            logging.warning(f'[ISSUE] identifier collision on {certificate_id} '
                            f'(attempt {attempt}/{max_attempts}); regenerating')
            continue
        logging.info(f'[ISSUE] certificate {cert.certificate_id} issued to user {user.id} for course {course.id}')
        return cert
    raise ConstraintViolation(f'Could not allocate a unique certificate identifier after {max_attempts} attempts',
                              field='certificateId') from last_error


def effective_hash(certificate, user, course) -> str:
    """Stored hash, or a freshly computed one when missing or a placeholder."""
    if certificate.has_real_hash:
        return certificate.hash
    return expected_hash(certificate, user, course)


def new_secondary_id() -> str:
    return f"SV-{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"


@dataclass
class SyncResult:
    hash: Optional[str] = None
    secondary_id: Optional[str] = None
    hash_written: bool = False
    secondary_written: bool = False
    id_backfilled: bool = False
    errors: list = field(default_factory=list)


def sync_certificate_on_download(storage, secondary_store, certificate, user, course) -> SyncResult:
    """Backfill the hash and copy the certificate into the secondary store.

    Each step may fail on its own; failures are logged and recorded on the
    result, never raised, because the PDF has already been produced. The
    secondary id is claimed on the primary record before anything is written
    to the secondary store, so of several concurrent first downloads only the
    one that wins the claim writes a record.
    """
    result = SyncResult(hash=effective_hash(certificate, user, course), secondary_id=certificate.secondary_id)
    cid = certificate.certificate_id

    if not certificate.has_real_hash:
        try:
            result.hash_written = storage.update_certificate_hash(certificate.id, result.hash)
        except CertificateServiceError as e:
            logging.error(f'[DOWNLOAD SYNC] hash backfill failed for {cid}: {e}')
            result.errors.append('hash')

    if certificate.secondary_id:
        return result

    try:
        existing = secondary_store.find_by_certificate_id(cid)
    except CertificateServiceError as e:
        logging.error(f'[DOWNLOAD SYNC] secondary store lookup failed for {cid}: {e}')
        result.errors.append('secondary')
        return result
    secondary_id = existing.id if existing else new_secondary_id()

    try:
        claimed = storage.claim_certificate_secondary_id(certificate.id, secondary_id)
    except CertificateServiceError as e:
        logging.error(f'[DOWNLOAD SYNC] secondary id claim failed for {cid}: {e}')
        result.errors.append('secondary_id')
        return result
    if not claimed:
        current = storage.get_certificate(certificate.id)
        result.secondary_id = current.secondary_id if current else None
        logging.info(f'[DOWNLOAD SYNC] certificate {cid} already linked to {result.secondary_id}; nothing to write')
        return result
    result.id_backfilled = True
    result.secondary_id = secondary_id
    if existing:
        return result

    record = SecondaryCertificateRecord(
        id=secondary_id,
        certificate_id=cid,
        holder_name=user.name,
        course_title=course.title,
        completion_date=certificate.completion_date_iso,
        hash=result.hash,
        user_id=certificate.user_id,
        course_id=certificate.course_id,
    )
    try:
        secondary_store.save(record)
    except CertificateServiceError as e:
        logging.error(f'[DOWNLOAD SYNC] secondary store write failed for {cid}: {e}')
        result.errors.append('secondary')
        result.id_backfilled = False
        result.secondary_id = None
        try:
            storage.release_certificate_secondary_id(certificate.id, secondary_id)
        except CertificateServiceError as release_error:
            logging.error(f'[DOWNLOAD SYNC] could not release secondary id {secondary_id} of {cid}: {release_error}')
            result.errors.append('secondary_id')
        return result
    result.secondary_written = True
    logging.info(f'[DOWNLOAD SYNC] certificate {cid} copied to secondary store as {secondary_id}')
    return result


@dataclass
class HashAudit:
    checked: int = 0
    missing: list = field(default_factory=list)
    mismatched: list = field(default_factory=list)
    fixed: list = field(default_factory=list)


def audit_certificate_hashes(storage, fix_missing: bool = False) -> HashAudit:
    """Recompute every stored hash from the bound fields.

    `missing` lists identifiers without a real hash, `mismatched` those whose
    stored hash no longer matches holder, course, date and identifier. With
    fix_missing=True the missing hashes are written.
    """
    audit = HashAudit()
    for details in storage.get_all_certificates():
        audit.checked += 1
        cert = details.certificate
        expected = expected_hash(cert, details.user, details.course)
        if not cert.has_real_hash:
            audit.missing.append(cert.certificate_id)
            if fix_missing and storage.update_certificate_hash(cert.id, expected):
                audit.fixed.append(cert.certificate_id)
        elif cert.hash != expected:
            audit.mismatched.append(cert.certificate_id)
    if audit.mismatched:
        logging.warning(f"[HASH AUDIT] {len(audit.mismatched)} certificate(s) have hashes that no longer match: "
                        f"{', '.join(audit.mismatched)}")
    return audit


def is_valid_certificate_id(value) -> bool:
    return isinstance(value, str) and bool(CERTIFICATE_ID_PATTERN.match(value))


def is_valid_hash(value) -> bool:
    return isinstance(value, str) and bool(HASH_PATTERN.match(value))
