import pytest
from pymongo.errors import ServerSelectionTimeoutError

from errors import UpstreamUnavailable
from secondary_store import MongoSecondaryStore, SecondaryCertificateRecord, MemorySecondaryStore


class FakeCollection:
    """Just enough of a pymongo collection for the store."""

    def __init__(self):
        self.docs = []

    def insert_one(self, doc):
        self.docs.append(dict(doc, _id=len(self.docs) + 1))

    def find_one(self, query, projection=None):
        (field, value), = query.items()
        for doc in self.docs:
            if doc.get(field) == value:
                return {k: v for k, v in doc.items() if k != '_id'}
        return None


class DownCollection:
    def insert_one(self, doc):
        raise ServerSelectionTimeoutError('no servers available')

    def find_one(self, query, projection=None):
        raise ServerSelectionTimeoutError('no servers available')


RECORD = SecondaryCertificateRecord(
    id='SV-1735000000000-0a1b2c3d4', certificate_id='WS-2025-0A1B2C', holder_name='Admin User',
    course_title='AI Design Sprint Bootcamp', completion_date='2025-01-15', hash='c' * 64,
    user_id=1, course_id=1,
)


@pytest.fixture(params=['mongo', 'memory'])
def store(request):
    if request.param == 'mongo':
        return MongoSecondaryStore(FakeCollection())
    return MemorySecondaryStore()


def test_lookups_are_exact(store):
    store.save(RECORD)
    assert store.find_by_certificate_id('WS-2025-0A1B2C') == RECORD
    assert store.find_by_id(RECORD.id) == RECORD
    assert store.find_by_hash('c' * 64) == RECORD
    assert store.find_by_certificate_id('ws-2025-0a1b2c') is None
    assert store.find_by_hash('c' * 63) is None


def test_documents_use_camel_case_keys():
    collection = FakeCollection()
    MongoSecondaryStore(collection).save(RECORD)
    doc = collection.docs[0]
    assert doc['certificateId'] == 'WS-2025-0A1B2C'
    assert doc['holderName'] == 'Admin User'
    assert doc['completionDate'] == '2025-01-15'


def test_driver_errors_become_upstream_unavailable():
    store = MongoSecondaryStore(DownCollection())
    with pytest.raises(UpstreamUnavailable):
        store.save(RECORD)
    with pytest.raises(UpstreamUnavailable) as exc:
        store.find_by_hash('c' * 64)
    assert exc.value.to_dict() == {'error': 'Service temporarily unavailable'}
