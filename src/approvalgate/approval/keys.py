"""Key registry contract and its bundled implementations.

The registry is persisted outside this package; the protocol below is the
only thing verification depends on. Every registry is an explicit instance
owned by the caller, so tests and tenants never share key state.

Dependencies: approval.crypto, approval.key_files, errors
Wired in: approval/signing.py, gate/capability_gate.py
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pydantic import AwareDatetime, BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from approvalgate.approval.crypto import SIGNING_ALGORITHM, SigningKeyPair, public_key_from_hex
from approvalgate.approval.key_files import read_keyring_entries, write_keyring_entries
from approvalgate.errors import KeyRegistryError

_log = logging.getLogger(__name__)


class PublicKeyRecord(BaseModel):
    """Registered verification key. ``revoked`` only ever moves false to true."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )

    key_id: str
    public_key: str
    algorithm: str = SIGNING_ALGORITHM
    owner: str
    registered_at: AwareDatetime
    expires_at: AwareDatetime | None = None
    revoked: bool = False

    @field_validator("public_key")
    @classmethod
    def _valid_key_material(cls, value: str) -> str:
        public_key_from_hex(value)
        return value.lower()

    @field_validator("algorithm")
    @classmethod
    def _supported_algorithm(cls, value: str) -> str:
        if value != SIGNING_ALGORITHM:
            raise ValueError(f"unsupported signing algorithm {value!r}")
        return value

    @classmethod
    def from_key_pair(
        cls,
        key_pair: SigningKeyPair,
        *,
        owner: str,
        expires_at: datetime | None = None,
    ) -> PublicKeyRecord:
        return cls(
            key_id=key_pair.key_id,
            public_key=key_pair.public_key,
            algorithm=key_pair.algorithm,
            owner=owner,
            registered_at=datetime.now(UTC),
            expires_at=expires_at,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(UTC))

    def as_revoked(self) -> PublicKeyRecord:
        return self.model_copy(update={"revoked": True})


class KeyRegistry(Protocol):
    """Lookup, registration and revocation of verification keys."""

    async def get_public_key(self, key_id: str) -> PublicKeyRecord | None: ...

    async def register_public_key(self, record: PublicKeyRecord) -> None: ...

    async def revoke_key(self, key_id: str) -> None: ...

    async def list_keys(self, owner: str) -> list[PublicKeyRecord]: ...


def _merge_registration(
    existing: PublicKeyRecord | None, record: PublicKeyRecord
) -> PublicKeyRecord | None:
    """Return the record to store, or None when nothing changes."""
    if existing is None:
        return record
    if existing.public_key != record.public_key or existing.owner != record.owner:
        raise KeyRegistryError(
            "key_conflict",
            f"Key id {record.key_id} is already registered with different key material.",
        )
    if existing.revoked or not record.revoked:
        return None
    return existing.as_revoked()


class InMemoryKeyRegistry:
    """Process-local registry, mainly for tests and single-process tools."""

    def __init__(self, records: Iterable[PublicKeyRecord] = ()) -> None:
        self._records: dict[str, PublicKeyRecord] = {}
        for record in records:
            merged = _merge_registration(self._records.get(record.key_id), record)
            if merged is not None:
                self._records[record.key_id] = merged

    async def get_public_key(self, key_id: str) -> PublicKeyRecord | None:
        return self._records.get(key_id)

    async def register_public_key(self, record: PublicKeyRecord) -> None:
        merged = _merge_registration(self._records.get(record.key_id), record)
        if merged is not None:
            self._records[record.key_id] = merged

    async def revoke_key(self, key_id: str) -> None:
        record = self._records.get(key_id)
        if record is None or record.revoked:
            return
        self._records[key_id] = record.as_revoked()
        _log.info("Revoked approval signing key %s", key_id)

    async def list_keys(self, owner: str) -> list[PublicKeyRecord]:
        return [record for record in self._records.values() if record.owner == owner]


class FileKeyRegistry:
    """Registry persisted as a versioned JSON keyring file."""

    def __init__(self, keyring_path: Path) -> None:
        self._path = keyring_path
        self._lock = threading.Lock()

    async def get_public_key(self, key_id: str) -> PublicKeyRecord | None:
        records = await asyncio.to_thread(self._load)
        return records.get(key_id)

    async def register_public_key(self, record: PublicKeyRecord) -> None:
        await asyncio.to_thread(self._register_sync, record)

    async def revoke_key(self, key_id: str) -> None:
        await asyncio.to_thread(self._revoke_sync, key_id)

    async def list_keys(self, owner: str) -> list[PublicKeyRecord]:
        records = await asyncio.to_thread(self._load)
        return [record for record in records.values() if record.owner == owner]

    def _register_sync(self, record: PublicKeyRecord) -> None:
        with self._lock:
            records = self._load()
            merged = _merge_registration(records.get(record.key_id), record)
            if merged is None:
                return
            records[record.key_id] = merged
            self._save(records)

    def _revoke_sync(self, key_id: str) -> None:
        with self._lock:
            records = self._load()
            record = records.get(key_id)
            if record is None or record.revoked:
                return
            records[key_id] = record.as_revoked()
            self._save(records)
        _log.info("Revoked approval signing key %s in %s", key_id, self._path)

    def _load(self) -> dict[str, PublicKeyRecord]:
        records: dict[str, PublicKeyRecord] = {}
        for entry in read_keyring_entries(self._path):
            try:
                record = PublicKeyRecord.model_validate(entry)
            except ValidationError as exc:
                raise KeyRegistryError(
                    "keyring_invalid", f"Keyring entry is invalid in {self._path}."
                ) from exc
            records[record.key_id] = record
        return records

    def _save(self, records: dict[str, PublicKeyRecord]) -> None:
        write_keyring_entries(
            self._path,
            [
                record.model_dump(mode="json", by_alias=True, exclude_none=True)
                for record in records.values()
            ],
        )


class CachingKeyRegistry:
    """Read-through cache in front of another registry.

    Revocation and registration through this wrapper drop the cached entry,
    and a lookup that overlaps one of those writes is returned but not cached.
    Revocations applied directly to the inner registry are only seen after
    ``invalidate()``.
    """

    def __init__(self, inner: KeyRegistry) -> None:
        self._inner = inner
        self._cache: dict[str, PublicKeyRecord] = {}
        self._writes_in_flight: dict[str, int] = {}
        self._epoch = 0

    async def get_public_key(self, key_id: str) -> PublicKeyRecord | None:
        cached = self._cache.get(key_id)
        if cached is not None:
            return cached
        epoch = self._epoch
        record = await self._inner.get_public_key(key_id)
        if record is not None and epoch == self._epoch and key_id not in self._writes_in_flight:
            self._cache[key_id] = record
        return record

    async def register_public_key(self, record: PublicKeyRecord) -> None:
        self._begin_write(record.key_id)
        try:
            await self._inner.register_public_key(record)
        finally:
            self._end_write(record.key_id)

    async def revoke_key(self, key_id: str) -> None:
        self._begin_write(key_id)
        try:
            await self._inner.revoke_key(key_id)
        finally:
            self._end_write(key_id)

    async def list_keys(self, owner: str) -> list[PublicKeyRecord]:
        return await self._inner.list_keys(owner)

    def invalidate(self, key_id: str | None = None) -> None:
        self._epoch += 1
        if key_id is None:
            self._cache.clear()
        else:
            self._cache.pop(key_id, None)

    def _begin_write(self, key_id: str) -> None:
        self._writes_in_flight[key_id] = self._writes_in_flight.get(key_id, 0) + 1
        self.invalidate(key_id)

    def _end_write(self, key_id: str) -> None:
        remaining = self._writes_in_flight.pop(key_id) - 1
        if remaining:
            self._writes_in_flight[key_id] = remaining
        self.invalidate(key_id)
