"""DNS challenge verifier - checks that challenge TXT records are visible in live DNS."""

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

import dns.exception
import dns.resolver

from dns_engine.core.errors import ChallengeLookupError
from dns_engine.core.models import ACME_CHALLENGE_SUBDOMAIN, Challenge

logger = logging.getLogger(__name__)


def challenge_record_name(domain: str) -> str:
    """``_acme-challenge.<domain>``; a wildcard shares the record of its base name."""
    if domain.startswith("*."):
        domain = domain[2:]
    return f"{ACME_CHALLENGE_SUBDOMAIN}.{domain.rstrip('.')}"


class ChallengeVerifier(ABC):

    @abstractmethod
    def verify(self, domain: str, challenge_key: str) -> bool:
        """
        True once the TXT record for ``domain`` contains ``challenge_key``.

        Not-yet-visible is False, never an error. Raises ChallengeLookupError
        only when the lookup itself could not be performed.
        """
        pass


class DnsChallengeVerifier(ChallengeVerifier):
    """Resolves TXT records with dnspython."""

    def __init__(
        self,
        nameservers: Optional[List[str]] = None,
        timeout: float = 5.0,
        resolver: Optional[dns.resolver.Resolver] = None,
    ):
        self.timeout = timeout
        if resolver is None:
            resolver = dns.resolver.Resolver(configure=not nameservers)
            if nameservers:
                resolver.nameservers = list(nameservers)
        self._resolver = resolver

    def verify(self, domain: str, challenge_key: str) -> bool:
        name = challenge_record_name(domain)
        try:
            answers = self._resolver.resolve(name, "TXT", lifetime=self.timeout)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            logger.debug(f"[verifier] {name}: no TXT record yet")
            return False
        except (dns.exception.Timeout, dns.resolver.NoNameservers) as e:
            raise ChallengeLookupError(f"TXT lookup for {name} failed: {e}") from e

        for rdata in answers:
            value = b"".join(rdata.strings).decode("utf-8", errors="replace")
            if value == challenge_key:
                return True

        logger.debug(f"[verifier] {name}: TXT present but challenge key not found")
        return False


def all_verified(challenges: Iterable[Challenge], verifier: ChallengeVerifier) -> bool:
    """
    All-or-nothing gate over a certificate's challenges.

    Checked in order and stops at the first unresolved one. Lookup faults
    propagate to the caller.
    """
    for challenge in challenges:
        if not verifier.verify(challenge.domain, challenge.challenge_key):
            logger.info(f"[verifier] {challenge.domain} not resolvable yet")
            return False
    return True
