"""
Verification resolver: looks a caller-supplied token up in the secondary
store (certificate id, store id, hash), then falls back to a scan of the
primary store. Both sources answer in the same normalised shape.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from errors import UpstreamUnavailable

SOURCE_SECONDARY = 'secondary'
SOURCE_PRIMARY = 'primary'


@dataclass
class VerificationResult:
    valid: bool
    source: Optional[str] = None
    certificate: Optional[dict] = None

    def to_dict(self) -> dict:
        if not self.valid:
            return {'valid': False, 'error': 'Certificate not found'}
        return {'valid': True, 'source': self.source, 'certificate': self.certificate}


def normalize_secondary_record(record) -> dict:
    return {
        'id': record.id,
        'certificateId': record.certificate_id,
        'holderName': record.holder_name,
        'courseTitle': record.course_title,
        'completionDate': record.completion_date,
        'hash': record.hash,
        'secondaryId': record.id,
    }


def normalize_primary_record(details) -> dict:
    cert = details.certificate
    return {
        'id': cert.secondary_id or cert.certificate_id,
        'certificateId': cert.certificate_id,
        'holderName': details.user.name,
        'courseTitle': details.course.title,
        'completionDate': cert.completion_date_iso,
        'hash': cert.hash,
        'secondaryId': cert.secondary_id,
    }


def _lookup_secondary(secondary_store, token):
    for finder in (secondary_store.find_by_certificate_id,
                   secondary_store.find_by_id,
                   secondary_store.find_by_hash):
        record = finder(token)
        if record:
            return record
    return None


def resolve_verification(token, storage, secondary_store) -> VerificationResult:
    token = (token or '').strip()
    if not token:
        return VerificationResult(valid=False)

    try:
        record = _lookup_secondary(secondary_store, token)
    except UpstreamUnavailable as e:
        logging.warning(f'[VERIFY] secondary store unavailable, falling back to primary: {e.message}')
        record = None
    if record:
        logging.info(f'[VERIFY] {token} matched in secondary store')
        return VerificationResult(valid=True, source=SOURCE_SECONDARY,
                                  certificate=normalize_secondary_record(record))

    # Linear scan; fine at current volumes, indexed lookups on hash/secondary_id would replace it
    for details in storage.get_all_certificates():
        cert = details.certificate
        if token in (cert.hash, cert.secondary_id, cert.certificate_id):
            logging.info(f'[VERIFY] {token} matched in primary store')
            return VerificationResult(valid=True, source=SOURCE_PRIMARY,
                                      certificate=normalize_primary_record(details))

    logging.info(f'[VERIFY] {token} not found')
    return VerificationResult(valid=False)
