"""
Local durable key-value store.

Each logical entity type lives under one well-known key as a JSON document.
Every write is a compare-and-set on the key's version, so two overlapping
read-modify-write cycles can never silently drop one another's change: the
loser gets VersionConflict and Collection.mutate re-reads and re-applies.
"""
from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Generic, Iterable, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StorageFailure, VersionConflict
from ..models.storage import KvEntry
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class _Any:
    def __repr__(self) -> str:
        return "ANY_VERSION"


# Pass as expected_version to write regardless of the current version
ANY_VERSION = _Any()


class StorageKeys:
    PRODUCTS = "@pos_products"
    TRANSACTIONS = "@pos_transactions"
    CUSTOMERS = "@pos_customers"
    CART = "@pos_cart"
    CATEGORIES = "@pos_categories"
    DISCOUNTS = "@pos_discounts"
    STOCK_MOVEMENTS = "@pos_stock_movements"
    SETTINGS = "@pos_settings"
    SYNC_QUEUE = "@pos_sync_queue"
    SYNC_DEAD_LETTERS = "@pos_sync_dead_letters"
    LAST_SYNC = "@pos_last_sync"
    EXPENSES = "@pos_expenses"
    KASBON = "@pos_kasbon"
    AUDIT_LOGS = "@pos_audit_logs"

    @classmethod
    def all(cls) -> list[str]:
        return [v for k, v in vars(cls).items() if k.isupper()]


class KeyValueStore:
    """
    Interface every durable store implements.

    Versions are positive integers assigned by the store; None means the key is
    absent. expected_version=None on set() means "only if absent".
    """

    def get(self, key: str) -> bytes | None:
        value, _ = self.get_versioned(key)
        return value

    def get_versioned(self, key: str) -> tuple[bytes | None, int | None]:
        raise NotImplementedError

    def set(self, key: str, value: bytes, expected_version=ANY_VERSION) -> int:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        self.multi_delete([key])

    def multi_delete(self, keys: Iterable[str]) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """In-process store with the same compare-and-set contract."""

    def __init__(self):
        self._data: dict[str, tuple[bytes, int]] = {}
        self._lock = threading.Lock()

    def get_versioned(self, key: str) -> tuple[bytes | None, int | None]:
        with self._lock:
            entry = self._data.get(key)
        if entry is None:
            return None, None
        return entry

    def set(self, key: str, value: bytes, expected_version=ANY_VERSION) -> int:
        if not isinstance(value, (bytes, bytearray)):
            raise TypeError("value must be bytes")
        with self._lock:
            current = self._data.get(key)
            current_version = current[1] if current else None
            if expected_version is not ANY_VERSION and expected_version != current_version:
                raise VersionConflict(key, expected_version, current_version)
            new_version = (current_version or 0) + 1
            self._data[key] = (bytes(value), new_version)
            return new_version

    def multi_delete(self, keys: Iterable[str]) -> None:
        with self._lock:
            for key in keys:
                self._data.pop(key, None)


class SqlKeyValueStore(KeyValueStore):
    """
    Store backed by the kv_entries table.

    Each set() commits on its own; the ORM's version_id_col turns a concurrent
    update into StaleDataError, which is reported as VersionConflict.
    """

    def __init__(self, session):
        self.session = session

    def _load(self, key: str) -> KvEntry | None:
        return (
            self.session.query(KvEntry)
            .filter_by(key=key)
            .populate_existing()
            .first()
        )

    def get_versioned(self, key: str) -> tuple[bytes | None, int | None]:
        try:
            row = self._load(key)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure(f"Failed to load {key}", details={"key": key}) from exc
        if row is None:
            return None, None
        return bytes(row.value), row.version_id

    def set(self, key: str, value: bytes, expected_version=ANY_VERSION) -> int:
        try:
            row = self._load(key)
            current_version = row.version_id if row is not None else None
            if expected_version is not ANY_VERSION and expected_version != current_version:
                raise VersionConflict(key, expected_version, current_version)

            if row is None:
                row = KvEntry(key=key, value=bytes(value))
                self.session.add(row)
            else:
                row.value = bytes(value)
            self.session.commit()
            return row.version_id
        except (StaleDataError, IntegrityError) as exc:
            self.session.rollback()
            raise VersionConflict(key, expected_version, None) from exc
        except VersionConflict:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure(f"Failed to save {key}", details={"key": key}) from exc

    def multi_delete(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        try:
            self.session.query(KvEntry).filter(KvEntry.key.in_(keys)).delete(synchronize_session=False)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure("Failed to remove keys", details={"keys": keys}) from exc


def dumps(value) -> bytes:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def loads(raw: bytes):
    return json.loads(raw.decode("utf-8"))


class Collection(Generic[T]):
    """
    Typed view of one key.

    decode/encode translate between the stored JSON document and the Python
    value; default() supplies the value of an absent key.
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str,
        *,
        decode: Callable[[object], T],
        encode: Callable[[T], object],
        default: Callable[[], T],
        attempts: int = 3,
    ):
        self.store = store
        self.key = key
        self._decode = decode
        self._encode = encode
        self._default = default
        self.attempts = attempts

    def _read(self) -> tuple[T, int | None]:
        raw, version = self.store.get_versioned(self.key)
        if raw is None:
            return self._default(), None
        try:
            return self._decode(loads(raw)), version
        except (ValueError, KeyError, TypeError, ArithmeticError) as exc:
            raise StorageFailure(f"Corrupt data under {self.key}", details={"key": self.key}) from exc

    def load(self) -> T:
        value, _ = self._read()
        return value

    def mutate(self, fn: Callable[[T], tuple[T, R]]) -> R:
        """
        Apply fn to the current value and write the result back.

        fn may be called more than once if another writer wins the race, so it
        must not have side effects beyond computing its return value. Errors
        raised by fn propagate without any write.
        """
        def _op():
            current, version = self._read()
            new_value, result = fn(current)
            self.store.set(
                self.key,
                dumps(self._encode(new_value)),
                expected_version=version,
            )
            return result

        def _log(exc):
            logger.info("write conflict on %s: %s", self.key, exc)

        try:
            return run_with_retry(_op, attempts=self.attempts, on_retry=_log)
        except VersionConflict as exc:
            raise StorageFailure(
                f"Gave up writing {self.key} after {self.attempts} conflicting attempts",
                details={"key": self.key},
            ) from exc

    def replace(self, value: T) -> None:
        self.store.set(self.key, dumps(self._encode(value)))


def record_list(store: KeyValueStore, key: str, record_type, *, attempts: int = 3) -> Collection:
    """Collection of records kept as an ordered JSON list of to_dict() payloads."""
    return Collection(
        store,
        key,
        decode=lambda raw: [record_type.from_dict(item) for item in raw],
        encode=lambda records: [r.to_dict() for r in records],
        default=list,
        attempts=attempts,
    )
