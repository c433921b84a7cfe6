"""
Secondary verification store.

An independent document index of issued certificates, filled the first time a
certificate PDF is downloaded and queried by the verification resolver before
the primary store. It is not the system of record.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from flask import current_app
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from errors import UpstreamUnavailable

SECONDARY_EXTENSION_KEY = 'secondary_store'


@dataclass(frozen=True)
class SecondaryCertificateRecord:
    id: str
    certificate_id: str
    holder_name: str
    course_title: str
    completion_date: str  # YYYY-MM-DD
    hash: Optional[str]
    user_id: Optional[int] = None
    course_id: Optional[int] = None

    def to_document(self) -> dict:
        return {
            'id': self.id,
            'certificateId': self.certificate_id,
            'holderName': self.holder_name,
            'courseTitle': self.course_title,
            'completionDate': self.completion_date,
            'hash': self.hash,
            'userId': self.user_id,
            'courseId': self.course_id,
        }

    @classmethod
    def from_document(cls, doc: dict) -> 'SecondaryCertificateRecord':
        return cls(
            id=doc.get('id'),
            certificate_id=doc.get('certificateId'),
            holder_name=doc.get('holderName'),
            course_title=doc.get('courseTitle'),
            completion_date=doc.get('completionDate'),
            hash=doc.get('hash'),
            user_id=doc.get('userId'),
            course_id=doc.get('courseId'),
        )


class SecondaryStore(ABC):

    @abstractmethod
    def save(self, record: SecondaryCertificateRecord) -> None: ...

    @abstractmethod
    def find_by_certificate_id(self, token: str) -> Optional[SecondaryCertificateRecord]: ...

    @abstractmethod
    def find_by_id(self, token: str) -> Optional[SecondaryCertificateRecord]: ...

    @abstractmethod
    def find_by_hash(self, token: str) -> Optional[SecondaryCertificateRecord]: ...


class MemorySecondaryStore(SecondaryStore):
    """Append-only list of records, guarded by a lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records = []

    def save(self, record):
        with self._lock:
            self._records.append(record)

    def _first(self, field, token):
        with self._lock:
            return next((r for r in self._records if getattr(r, field) == token), None)

    def find_by_certificate_id(self, token):
        return self._first('certificate_id', token)

    def find_by_id(self, token):
        return self._first('id', token)

    def find_by_hash(self, token):
        return self._first('hash', token)

    def all_records(self):
        with self._lock:
            return list(self._records)


class MongoSecondaryStore(SecondaryStore):
    """Records kept as documents in a MongoDB collection.

    Any driver error (including server-selection timeouts) is raised as
    UpstreamUnavailable so callers can treat the store as best-effort.
    """

    def __init__(self, collection):
        self._collection = collection

    @classmethod
    def from_uri(cls, uri, database='wespark', collection='certificates', timeout_ms=3000):
        client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        return cls(client[database][collection])

    def save(self, record):
        try:
            self._collection.insert_one(record.to_document())
        except PyMongoError as e:
            raise UpstreamUnavailable(f'Secondary store write failed: {e}') from e
        logging.info(f'[SECONDARY] saved certificate {record.certificate_id} as {record.id}')

    def _find_one(self, field, token):
        try:
            doc = self._collection.find_one({field: token}, {'_id': 0})
        except PyMongoError as e:
            raise UpstreamUnavailable(f'Secondary store lookup failed: {e}') from e
        return SecondaryCertificateRecord.from_document(doc) if doc else None

    def find_by_certificate_id(self, token):
        return self._find_one('certificateId', token)

    def find_by_id(self, token):
        return self._find_one('id', token)

    def find_by_hash(self, token):
        return self._find_one('hash', token)


def create_secondary_store(app) -> SecondaryStore:
    uri = app.config.get('SECONDARY_STORE_URI')
    if uri:
        store = MongoSecondaryStore.from_uri(
            uri,
            database=app.config.get('SECONDARY_STORE_DATABASE', 'wespark'),
            collection=app.config.get('SECONDARY_STORE_COLLECTION', 'certificates'),
            timeout_ms=int(app.config.get('SECONDARY_STORE_TIMEOUT_MS', 3000)),
        )
        logging.info('[SECONDARY] using MongoDB secondary store')
    else:
        store = MemorySecondaryStore()
        logging.info('[SECONDARY] SECONDARY_STORE_URI not set; using in-memory secondary store')
    app.extensions[SECONDARY_EXTENSION_KEY] = store
    return store


def get_secondary_store() -> SecondaryStore:
    return current_app.extensions[SECONDARY_EXTENSION_KEY]
