#dns_engine/jobs/slots.py

"""Slot manager for controlling stage worker concurrency."""

import threading
from typing import List, Optional
from uuid import UUID


class Slot:
    """Represents a single job slot."""

    def __init__(self, slot_id: int):
        self.slot_id = slot_id
        self.job_id: Optional[UUID] = None

    def is_free(self) -> bool:
        return self.job_id is None

    def bind(self, job_id: UUID) -> None:
        """Bind a claimed job to this slot."""
        if not self.is_free():
            raise ValueError(f"Slot {self.slot_id} already occupied")
        self.job_id = job_id

    def release(self) -> None:
        self.job_id = None

    def __repr__(self) -> str:
        status = "free" if self.is_free() else f"occupied({self.job_id})"
        return f"<Slot(id={self.slot_id}, {status})>"


class SlotManager:
    """
    Fixed pool of slots shared by the worker loop and its job threads.

    Slots are reserved before a claim so the worker never holds more leases
    than it can run.
    """

    def __init__(self, max_slots: int):
        if max_slots < 1:
            raise ValueError("max_slots must be at least 1")

        self._slots = [Slot(i) for i in range(max_slots)]
        self._reserved: set = set()
        self._lock = threading.Lock()

    def reserve(self) -> Optional[Slot]:
        """Reserve a free slot, or None when all are busy."""
        with self._lock:
            for slot in self._slots:
                if slot.is_free() and slot.slot_id not in self._reserved:
                    self._reserved.add(slot.slot_id)
                    return slot
        return None

    def bind(self, slot: Slot, job_id: UUID) -> None:
        with self._lock:
            self._reserved.discard(slot.slot_id)
            slot.bind(job_id)

    def release(self, slot: Slot) -> None:
        with self._lock:
            self._reserved.discard(slot.slot_id)
            slot.release()

    def active_slots(self) -> List[Slot]:
        with self._lock:
            return [s for s in self._slots if not s.is_free()]

    def find_slot_by_job(self, job_id: UUID) -> Optional[Slot]:
        with self._lock:
            for slot in self._slots:
                if slot.job_id == job_id:
                    return slot
        return None

    def total_slots(self) -> int:
        return len(self._slots)

    def free_slots(self) -> int:
        with self._lock:
            return sum(1 for s in self._slots if s.is_free() and s.slot_id not in self._reserved)

    def __repr__(self) -> str:
        return (
            f"<SlotManager(total={self.total_slots()}, "
            f"free={self.free_slots()}, "
            f"active={len(self.active_slots())})>"
        )
