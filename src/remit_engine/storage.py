"""Durable local state: triggered-payment dedup set, records, credentials.

Everything persisted by the engine lives in a small key/value backend shaped
like browser local storage (string keys, string values). Two backends ship:

- ``JSONFileBackend`` keeps every key in one JSON document on disk and writes
  copy-on-write (temp file, then rename) so a crash mid-write never leaves a
  half-written file behind.
- ``MemoryBackend`` is a plain dict, used in tests and short-lived processes.

Stores layered on top never raise for unreadable or corrupt data. The trigger
store in particular degrades to "nothing triggered yet".
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import UTC, datetime
import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, Self

if TYPE_CHECKING:
    import os

log = logging.getLogger(__name__)

TRIGGERED_PAYMENTS_KEY = "kindred_triggered_offramps"
MAX_TRIGGERED_ENTRIES = 100
ESCROW_STORE_KEY = "remit-escrows"
PAYMENT_STORE_KEY = "remit-payment-requests"
AUTH_TOKEN_KEY = "remit-auth-token"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class StorageBackend(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryBackend:
    """In-process backend; contents vanish with the object."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class JSONFileBackend:
    """Single-file JSON backend (mapping key -> string value).

    Every call re-reads the file, so two backends pointed at the same path
    (e.g. before and after a process restart) see the same data.
    """

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def get_item(self, key: str) -> str | None:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove_item(self, key: str) -> None:
        data = self._read_all()
        if data.pop(key, None) is not None:
            self._write_all(data)

    def _read_all(self) -> dict[str, object]:
        if not self._path.exists():
            return {}
        try:
            result = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("Ignoring unreadable state file %s: %s", self._path, e)
            return {}
        return result if isinstance(result, dict) else {}

    def _write_all(self, data: dict[str, object]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        tmp.replace(self._path)


# --- Triggered-payment dedup set ---


class TriggerStore:
    """Durable, bounded, order-preserving set of already-triggered IDs.

    ``add`` appends then trims to the newest ``max_entries`` IDs. Callers must
    ``add`` an ID *before* issuing the guarded call, never after it resolves.
    """

    def __init__(
        self,
        backend: StorageBackend,
        *,
        key: str = TRIGGERED_PAYMENTS_KEY,
        max_entries: int = MAX_TRIGGERED_ENTRIES,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._backend = backend
        self._key = key
        self._max_entries = max_entries

    def has(self, payment_id: str) -> bool:
        return payment_id in self._load()

    def add(self, payment_id: str) -> None:
        entries = self._load()
        if payment_id not in entries:
            entries.append(payment_id)
        trimmed = entries[-self._max_entries :]
        try:
            self._backend.set_item(self._key, json.dumps(trimmed))
        except Exception as e:  # noqa: BLE001
            log.warning("Failed to save triggered payment %s: %s", payment_id, e)

    def ids(self) -> tuple[str, ...]:
        """Return stored IDs, oldest first."""
        return tuple(self._load())

    def __contains__(self, payment_id: object) -> bool:
        return isinstance(payment_id, str) and self.has(payment_id)

    def __len__(self) -> int:
        return len(self._load())

    def _load(self) -> list[str]:
        try:
            raw = self._backend.get_item(self._key)
        except Exception as e:  # noqa: BLE001
            log.warning("Failed to read triggered payments: %s", e)
            return []
        if raw is None:
            return []
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            log.warning("Discarding corrupt triggered-payment list: %s", e)
            return []
        if not isinstance(parsed, list):
            return []
        # dict.fromkeys keeps first-seen order while dropping duplicates
        return list(dict.fromkeys(str(p) for p in parsed if isinstance(p, str)))


# --- Local records ---


@dataclass(frozen=True)
class EscrowCategory:
    name: str
    amount_usd: float

    def to_wire(self) -> dict[str, Any]:
        return {"name": self.name, "amountUsd": self.amount_usd}


@dataclass(frozen=True)
class EscrowRecord:
    """A confirmed escrow. Never written for an unconfirmed intent."""

    escrow_id: str
    recipient_phone: str
    total_amount_usd: float
    categories: tuple[EscrowCategory, ...] = ()
    created_at: str = field(default_factory=_now_iso)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        categories_raw = data.get("categories") or ()
        categories = tuple(
            EscrowCategory(name=str(c.get("name", "")), amount_usd=float(c.get("amount_usd", 0)))
            for c in categories_raw
            if isinstance(c, dict)
        )
        return cls(
            escrow_id=str(data["escrow_id"]),
            recipient_phone=str(data.get("recipient_phone", "")),
            total_amount_usd=float(data.get("total_amount_usd", 0)),
            categories=categories,
            created_at=str(data.get("created_at", "")),
        )


@dataclass(frozen=True)
class PaymentRequestRecord:
    payment_request_id: str
    payment_id: str
    escrow_id: str
    category_id: str
    category_name: str
    amount_kes_cents: int
    amount_usd_cents: int
    merchant_name: str
    merchant_account: str
    created_at: str = field(default_factory=_now_iso)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class _Record(Protocol):
    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self: ...


class LocalRecordStore[R: _Record]:
    """Newest-first list of records, deduplicated by a server-issued ID."""

    def __init__(
        self,
        backend: StorageBackend,
        key: str,
        *,
        record_type: type[R],
        id_field: str,
    ) -> None:
        self._backend = backend
        self._key = key
        self._record_type = record_type
        self._id_field = id_field

    def records(self) -> list[R]:
        records: list[R] = []
        for item in self._load():
            try:
                records.append(self._record_type.from_dict(item))
            except (KeyError, TypeError, ValueError) as e:
                log.debug("Skipping malformed %s entry: %s", self._key, e)
        return records

    def get(self, record_id: str) -> R | None:
        for record in self.records():
            if getattr(record, self._id_field) == record_id:
                return record
        return None

    def append(self, record: R) -> bool:
        """Prepend ``record`` unless its ID is already stored.

        Returns:
            True when the record was written, False for a duplicate.
        """
        current = self._load()
        record_id = getattr(record, self._id_field)
        if any(item.get(self._id_field) == record_id for item in current):
            return False
        self._backend.set_item(self._key, json.dumps([asdict(record), *current]))
        return True

    def _load(self) -> list[dict[str, Any]]:
        try:
            raw = self._backend.get_item(self._key)
            parsed = json.loads(raw) if raw else []
        except (OSError, ValueError) as e:
            log.warning("Failed to read %s: %s", self._key, e)
            return []
        if not isinstance(parsed, list):
            return []
        return [item for item in parsed if isinstance(item, dict)]


def escrow_record_store(backend: StorageBackend) -> LocalRecordStore[EscrowRecord]:
    return LocalRecordStore(
        backend, ESCROW_STORE_KEY, record_type=EscrowRecord, id_field="escrow_id"
    )


def payment_request_store(
    backend: StorageBackend,
) -> LocalRecordStore[PaymentRequestRecord]:
    return LocalRecordStore(
        backend,
        PAYMENT_STORE_KEY,
        record_type=PaymentRequestRecord,
        id_field="payment_request_id",
    )


# --- Credentials ---


class CredentialStore:
    """Bearer token storage shared by the transport and the error handler."""

    def __init__(self, backend: StorageBackend, *, key: str = AUTH_TOKEN_KEY) -> None:
        self._backend = backend
        self._key = key

    def get(self) -> str | None:
        return self._backend.get_item(self._key)

    def set(self, token: str) -> None:
        self._backend.set_item(self._key, token)

    def clear(self) -> None:
        self._backend.remove_item(self._key)
