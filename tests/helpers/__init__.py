from .fakes import (
    EXTERNAL_IDS,
    OTHER,
    POSTER,
    TOKENS,
    WORKER,
    FakeIdentityResolver,
    RecordingBus,
    RecordingPublisher,
)
from .inmemory_db import DuplicateKeyError, InMemDB
from .kafka import AIOKafkaProducerMock
from .util import get_record_by_event, make_draft, records_by_event

__all__ = [
    "AIOKafkaProducerMock",
    "DuplicateKeyError",
    "EXTERNAL_IDS",
    "FakeIdentityResolver",
    "InMemDB",
    "OTHER",
    "POSTER",
    "RecordingBus",
    "RecordingPublisher",
    "TOKENS",
    "WORKER",
    "get_record_by_event",
    "make_draft",
    "records_by_event",
]
