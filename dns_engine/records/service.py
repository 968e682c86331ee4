# dns_engine/records/service.py
"""
Record service - the only mutation path into the record store.

Every create, update and delete marks the reconciliation flag here and
nowhere else.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional

from dns_engine.core.errors import DuplicateRecordError, QuotaExceededError, RecordNotFound
from dns_engine.core.models import (
    ACME_CHALLENGE_SUBDOMAIN,
    DnsRecord,
    DnsRecordType,
    RECORD_VALIDITY_MONTHS,
    RecordTuple,
    record_expiry,
    utcnow,
)
from dns_engine.core.repository import DnsRecordRepository
from dns_engine.core.schemas import RecordCreate, RecordPatch
from dns_engine.core.validation import validate_record
from dns_engine.reconciler.flag import ReconciliationFlag
from dns_engine.users.service import UserGate

logger = logging.getLogger(__name__)


def _normalize_subdomain(subdomain: str) -> str:
    return subdomain.strip().rstrip(".").lower()


class RecordService:
    """
    Record CRUD with the account, quota and CNAME rules applied.

    Creation order of checks: deactivation, validation, quota, CNAME duplicate.
    A failed check leaves the store untouched.
    """

    def __init__(
        self,
        records: DnsRecordRepository,
        gate: UserGate,
        flag: ReconciliationFlag,
        *,
        record_limit: Optional[int] = None,
        validity_months: int = RECORD_VALIDITY_MONTHS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._records = records
        self._gate = gate
        self._flag = flag
        self.record_limit = record_limit
        self.validity_months = validity_months
        self._clock = clock

    def _expiry(self, now: datetime) -> datetime:
        return record_expiry(now, self.validity_months)

    # -------------------------
    # READ
    # -------------------------

    def list_records(self, owner: str) -> List[DnsRecord]:
        return self._records.list(owner=owner, exclude_acme_challenge=True)

    def count_records(self, owner: str) -> int:
        return self._records.count(owner)

    def get_record(self, owner: str, record_id: int) -> DnsRecord:
        record = self._records.get(record_id)
        if record is None or record.username != owner:
            raise RecordNotFound(f"Record {record_id} not found")
        return record

    def list_expired(self, now: Optional[datetime] = None) -> List[DnsRecord]:
        return self._records.list_expired(now or self._clock())

    def full_snapshot(self) -> List[RecordTuple]:
        return self._records.full_snapshot()

    # -------------------------
    # CREATE
    # -------------------------

    def create_record(self, owner: str, data: RecordCreate) -> DnsRecord:
        self._gate.ensure_active(owner)

        now = self._clock()
        record = DnsRecord(
            username=owner,
            type=data.type,
            subdomain=_normalize_subdomain(data.subdomain),
            value=data.value.strip(),
            ports=data.ports,
            course=data.course,
            description=data.description,
            created_at=now,
            updated_at=now,
            expires_at=self._expiry(now),
        )
        validate_record(record)

        if self.record_limit is not None and self._records.count(owner) >= self.record_limit:
            raise QuotaExceededError(
                f"Record limit of {self.record_limit} reached for {owner}"
            )

        if record.type == DnsRecordType.CNAME and self._records.cname_exists(owner, record.subdomain):
            raise DuplicateRecordError(
                f"A CNAME record already exists for {record.subdomain}"
            )

        # The store's unique index still rejects a CNAME that raced past the check
        created = self._records.create(record)
        self._flag.mark_needed()
        logger.info(
            f"[records] {owner} created {created.type.value} {created.subdomain} -> {created.value} (id {created.id})"
        )
        return created

    # -------------------------
    # UPDATE / RENEW
    # -------------------------

    def update_record(self, owner: str, record_id: int, patch: RecordPatch) -> DnsRecord:
        self._gate.ensure_active(owner)
        existing = self.get_record(owner, record_id)

        changes = patch.model_dump(exclude_unset=True)
        if changes.get("subdomain") is not None:
            changes["subdomain"] = _normalize_subdomain(changes["subdomain"])
        if changes.get("value") is not None:
            changes["value"] = changes["value"].strip()
        # type/subdomain/value cannot be cleared
        for required in ("type", "subdomain", "value"):
            if required in changes and changes[required] is None:
                del changes[required]

        merged = replace(existing, **changes)
        validate_record(merged)

        if merged.type == DnsRecordType.CNAME and self._records.cname_exists(
            owner, merged.subdomain, exclude_id=record_id
        ):
            raise DuplicateRecordError(f"A CNAME record already exists for {merged.subdomain}")

        now = self._clock()
        changes["updated_at"] = now
        changes["expires_at"] = self._expiry(now)

        updated = self._records.update(record_id, changes)
        self._flag.mark_needed()
        logger.info(f"[records] {owner} updated record {record_id}")
        return updated

    def renew_record(self, owner: str, record_id: int) -> DnsRecord:
        """Push expiry out to now + validity window. DNS data is unchanged, so the flag is not set."""
        self._gate.ensure_active(owner)
        self.get_record(owner, record_id)

        now = self._clock()
        renewed = self._records.update(record_id, {"expires_at": self._expiry(now), "updated_at": now})
        logger.info(f"[records] {owner} renewed record {record_id} until {renewed.expires_at.isoformat()}")
        return renewed

    # -------------------------
    # DELETE
    # -------------------------

    def delete_record(self, owner: str, record_id: int) -> DnsRecord:
        self._gate.ensure_active(owner)
        self.get_record(owner, record_id)

        deleted = self._records.delete(record_id)
        self._flag.mark_needed()
        logger.info(f"[records] {owner} deleted record {record_id}")
        return deleted

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every record past its expiry. Returns the number purged."""
        purged = 0
        for record in self.list_expired(now):
            try:
                self._records.delete(record.id)
                purged += 1
            except RecordNotFound:
                # Deleted concurrently
                continue

        if purged:
            self._flag.mark_needed()
        return purged

    def delete_owner_records(self, owner: str) -> int:
        records = self._records.list(owner=owner, exclude_acme_challenge=False)
        for record in records:
            try:
                self._records.delete(record.id)
            except RecordNotFound:
                continue

        if records:
            self._flag.mark_needed()
            logger.info(f"[records] removed {len(records)} record(s) of {owner}")
        return len(records)

    # -------------------------
    # CHALLENGE RECORDS
    # -------------------------

    def ensure_challenge_record(self, owner: str, value: str) -> DnsRecord:
        """
        Publish a DNS-01 TXT value at _acme-challenge.<owner>.

        Idempotent per value. Exempt from quota and from the deactivation check;
        pipeline stages check the account themselves.
        """
        for record in self._records.find_challenge_records(owner):
            if record.value == value:
                return record

        now = self._clock()
        record = DnsRecord(
            username=owner,
            type=DnsRecordType.TXT,
            subdomain=ACME_CHALLENGE_SUBDOMAIN,
            value=value,
            description="ACME DNS-01 challenge",
            created_at=now,
            updated_at=now,
            expires_at=self._expiry(now),
        )
        validate_record(record, allow_reserved=True)

        created = self._records.create(record)
        self._flag.mark_needed()
        logger.info(f"[records] published challenge TXT for {owner}")
        return created

    def remove_challenge_records(self, owner: str) -> int:
        removed = 0
        for record in self._records.find_challenge_records(owner):
            try:
                self._records.delete(record.id)
                removed += 1
            except RecordNotFound:
                continue

        if removed:
            self._flag.mark_needed()
            logger.info(f"[records] removed {removed} challenge TXT record(s) for {owner}")
        return removed
