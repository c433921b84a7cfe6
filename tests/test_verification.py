import pytest

from certificate import issue_certificate
from errors import UpstreamUnavailable
from secondary_store import MemorySecondaryStore, SecondaryCertificateRecord, SecondaryStore
from storage import MemStorage
from verification import resolve_verification, SOURCE_PRIMARY, SOURCE_SECONDARY


class UnreachableSecondaryStore(SecondaryStore):
    def save(self, record):
        raise UpstreamUnavailable('connection refused')

    def find_by_certificate_id(self, token):
        raise UpstreamUnavailable('connection refused')

    def find_by_id(self, token):
        raise UpstreamUnavailable('connection refused')

    def find_by_hash(self, token):
        raise UpstreamUnavailable('connection refused')


@pytest.fixture()
def primary():
    storage = MemStorage()
    issued = issue_certificate(storage, storage.get_user(1), storage.get_course(3), '2025-01-15')
    return storage, issued


def _record(cert, **overrides):
    values = dict(id='SV-1700000000000-abc123def', certificate_id=cert.certificate_id,
                  holder_name='Snapshot Holder', course_title='Snapshot Course',
                  completion_date='2025-01-15', hash=cert.hash, user_id=cert.user_id, course_id=cert.course_id)
    values.update(overrides)
    return SecondaryCertificateRecord(**values)


def test_secondary_store_wins(primary):
    storage, cert = primary
    secondary = MemorySecondaryStore()
    secondary.save(_record(cert))

    result = resolve_verification(cert.certificate_id, storage, secondary)

    assert result.valid
    assert result.source == SOURCE_SECONDARY
    assert result.certificate['holderName'] == 'Snapshot Holder'
    assert result.certificate['secondaryId'] == 'SV-1700000000000-abc123def'


@pytest.mark.parametrize('field', ['id', 'hash'])
def test_secondary_lookup_by_store_id_and_hash(primary, field):
    storage, cert = primary
    secondary = MemorySecondaryStore()
    record = _record(cert)
    secondary.save(record)

    result = resolve_verification(getattr(record, field), storage, secondary)
    assert result.source == SOURCE_SECONDARY
    assert result.certificate['certificateId'] == cert.certificate_id


@pytest.mark.parametrize('attr', ['certificate_id', 'hash'])
def test_primary_fallback(primary, attr):
    storage, cert = primary

    result = resolve_verification(getattr(cert, attr), storage, MemorySecondaryStore())

    assert result.valid
    assert result.source == SOURCE_PRIMARY
    body = result.certificate
    assert body['id'] == cert.certificate_id
    assert body['certificateId'] == cert.certificate_id
    assert body['holderName'] == 'Admin User'
    assert body['courseTitle'] == 'UX Design Principles'
    assert body['completionDate'] == '2025-01-15'
    assert body['hash'] == cert.hash
    assert body['secondaryId'] is None


def test_primary_fallback_by_secondary_id(primary):
    storage, cert = primary
    storage.claim_certificate_secondary_id(cert.id, 'SV-42-deadbeef0')

    result = resolve_verification('SV-42-deadbeef0', storage, MemorySecondaryStore())

    assert result.source == SOURCE_PRIMARY
    assert result.certificate['id'] == 'SV-42-deadbeef0'


@pytest.mark.parametrize('token', ['WS-2099-000000', 'f' * 64, '', '   ', None])
def test_miss(primary, token):
    storage, _ = primary
    result = resolve_verification(token, storage, MemorySecondaryStore())
    assert not result.valid
    assert result.to_dict() == {'valid': False, 'error': 'Certificate not found'}


def test_unreachable_secondary_falls_back_to_primary(primary, caplog):
    storage, cert = primary
    with caplog.at_level('WARNING'):
        result = resolve_verification(cert.hash, storage, UnreachableSecondaryStore())
    assert result.valid
    assert result.source == SOURCE_PRIMARY
    assert 'secondary store unavailable' in caplog.text


def test_primary_failure_propagates(primary):
    storage, cert = primary

    def broken():
        raise UpstreamUnavailable('primary down')

    storage.get_all_certificates = broken
    with pytest.raises(UpstreamUnavailable):
        resolve_verification(cert.certificate_id, storage, MemorySecondaryStore())
