"""Event emitters for certificate issuance."""

import logging
from abc import ABC, abstractmethod
from typing import Iterable

from dns_engine.core.events_model import CertificateEvent

logger = logging.getLogger(__name__)


ALLOWED_EVENTS = {
    "certificate.requested",
    "certificate.challenges_provisioned",
    "certificate.verified",
    "certificate.issued",
    "certificate.failed",
}


def _check(event: CertificateEvent) -> None:
    if event.event_type not in ALLOWED_EVENTS:
        raise ValueError(f"Invalid event type: {event.event_type}")
    if not event.certificate_id:
        raise ValueError("Event must have certificate_id")


class EventEmitter(ABC):
    """Abstract event emitter."""

    @abstractmethod
    def emit(self, events: Iterable[CertificateEvent]) -> None:
        """Emit one or more events."""
        pass


class LoggingEventEmitter(EventEmitter):
    """Writes events to the log. Failures go out at WARNING so owners can be notified."""

    def emit(self, events: Iterable[CertificateEvent]) -> None:
        for event in events:
            _check(event)
            level = logging.WARNING if event.event_type == "certificate.failed" else logging.INFO
            logger.log(
                level,
                f"[event] {event.event_type} | certificate={event.certificate_id} "
                f"user={event.username} {event.metadata}"
            )


class InMemoryEventEmitter(EventEmitter):
    """Keeps events in memory (tests, debugging)."""

    def __init__(self):
        self.events = []

    def emit(self, events: Iterable[CertificateEvent]) -> None:
        for event in events:
            _check(event)
            self.events.append(event)

    def types(self) -> list:
        return [e.event_type for e in self.events]


class MultiEventEmitter:
    """Fan-out to multiple emitters."""

    def __init__(self, emitters: Iterable[EventEmitter]):
        self._emitters = list(emitters)

    def emit(self, events: Iterable[CertificateEvent]):
        events = list(events)
        for emitter in self._emitters:
            emitter.emit(events)


class NullEventEmitter(EventEmitter):
    """No-op emitter (used when events are not needed)."""

    def emit(self, events: Iterable[CertificateEvent]) -> None:
        pass
