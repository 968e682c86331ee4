# dns_engine/certificates/acme_client.py
"""ACME v2 client (DNS-01) for Let's Encrypt, on top of the ``acme`` library."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

import acme.challenges
import acme.client
import acme.crypto_util
import acme.errors
import acme.messages
import josepy as jose
import requests
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from dns_engine.core.errors import (
    AcmeError,
    AcmeOrderInvalid,
    AcmeOrderNotReady,
    AcmeRequestRejected,
)

logger = logging.getLogger(__name__)


USER_AGENT = "dns-engine/1.0"

# Problem types worth another try later (RFC 8555 section 6.7)
TRANSIENT_PROBLEMS = ("badNonce", "rateLimited", "serverInternal")

# Order states the CA will never move on from
ORDER_GONE = ("invalid", "expired", "revoked", "deactivated")

CHALLENGE_VALID = "valid"
CHALLENGE_PENDING = "pending"
CHALLENGE_PROCESSING = "processing"
CHALLENGE_INVALID = "invalid"


# ============================================
# Types
# ============================================

@dataclass(frozen=True)
class AcmeChallenge:
    domain: str
    challenge_key: str  # the DNS-01 TXT value
    challenge_url: str


@dataclass(frozen=True)
class AcmeOrder:
    order_url: str
    challenges: Tuple[AcmeChallenge, ...]


@dataclass(frozen=True)
class IssuedCertificate:
    certificate_pem: str
    valid_from: datetime
    valid_to: datetime


class AcmeClient(ABC):
    """Certificate authority contract used by the issuance stages."""

    @abstractmethod
    def create_order(self, domains: List[str], private_key_pem: str) -> AcmeOrder:
        """Open an order for ``domains``, whose certificate will carry ``private_key_pem``."""
        pass

    @abstractmethod
    def validate_challenge(self, challenge_url: str) -> str:
        """Ask the CA to validate a challenge. Returns valid, pending, processing or invalid."""
        pass

    @abstractmethod
    def finalize(self, order_url: str, domains: List[str], private_key_pem: str) -> IssuedCertificate:
        """
        Submit the CSR and download the certificate.

        Raises AcmeOrderNotReady while the order is still pending or
        processing, AcmeOrderInvalid when the CA gave up on it.
        """
        pass


# ============================================
# Keys and certificates
# ============================================

def generate_private_key_pem() -> str:
    """New RSA-2048 domain key, PKCS8 PEM."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def build_csr(domains: List[str], private_key_pem: str) -> bytes:
    """PEM CSR naming every domain as a subject alternative name."""
    return acme.crypto_util.make_csr(private_key_pem.encode("ascii"), domains)


def certificate_validity(certificate_pem: str) -> Tuple[datetime, datetime]:
    """(not_before, not_after) of the leaf certificate, as naive UTC."""
    cert = x509.load_pem_x509_certificate(certificate_pem.encode("ascii"))
    return (
        cert.not_valid_before_utc.replace(tzinfo=None),
        cert.not_valid_after_utc.replace(tzinfo=None),
    )


def load_or_create_account_key(path: Path) -> jose.JWKRSA:
    if path.exists():
        key = serialization.load_pem_private_key(path.read_bytes(), password=None)
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ValueError("ACME account key is not an RSA key")
        return jose.JWKRSA(key=key)

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    path.chmod(0o600)
    logger.info(f"[acme] Created new account key at {path}")
    return jose.JWKRSA(key=key)


@contextmanager
def acme_errors(action: str) -> Iterator[None]:
    """Turn ``acme`` library failures into retryable or unrecoverable faults."""
    try:
        yield
    except acme.messages.Error as e:
        if e.code in TRANSIENT_PROBLEMS:
            raise AcmeError(f"ACME {action} failed: {e}") from e
        raise AcmeRequestRejected(f"ACME {action} failed: {e}") from e
    except acme.errors.IssuanceError as e:
        raise AcmeOrderInvalid(f"ACME {action} failed: {e.error}") from e
    except acme.errors.TimeoutError as e:
        raise AcmeOrderNotReady(f"ACME {action} is still processing") from e
    except (acme.errors.Error, jose.DeserializationError, requests.exceptions.RequestException) as e:
        raise AcmeError(f"ACME {action} failed: {e}") from e


# ============================================
# Let's Encrypt client
# ============================================

class LetsEncryptClient(AcmeClient):
    """
    DNS-01 issuance through ``acme.client.ClientV2``.

    The RSA account key is kept on disk and the account is registered on
    first use. One instance serves every stage worker thread while the
    library's nonce pool and account binding are plain attributes, so every
    exchange with the CA runs under ``_lock``.
    """

    def __init__(
        self,
        directory_url: str,
        account_key_path: str,
        contact_email: str = "",
        *,
        account_key: Optional[jose.JWK] = None,
        client: Optional[acme.client.ClientV2] = None,
        timeout: int = 30,
        poll_attempts: int = 10,
        poll_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.directory_url = directory_url
        self.account_key_path = Path(account_key_path)
        self.contact_email = contact_email
        self.timeout = timeout
        self.poll_attempts = poll_attempts
        self.poll_delay = poll_delay

        self._sleep = sleep
        self._account_key = account_key
        self._client = client
        self._lock = threading.Lock()

    # -------------------------
    # Account
    # -------------------------

    def _registered_client(self) -> acme.client.ClientV2:
        """Client bound to our account. Callers hold ``_lock``."""
        if self._client is not None:
            return self._client

        if self._account_key is None:
            self._account_key = load_or_create_account_key(self.account_key_path)

        with acme_errors("account registration"):
            net = acme.client.ClientNetwork(self._account_key, user_agent=USER_AGENT, timeout=self.timeout)
            directory = acme.messages.Directory.from_json(net.get(self.directory_url).json())
            client = acme.client.ClientV2(directory, net)

            email = self.contact_email or None
            try:
                account = client.new_account(
                    acme.messages.NewRegistration.from_data(email=email, terms_of_service_agreed=True)
                )
            except acme.errors.ConflictError as conflict:
                # Key already registered; the CA answered with the account URL
                account = acme.messages.RegistrationResource(
                    uri=conflict.location,
                    body=acme.messages.Registration.from_data(email=email),
                )
                client.net.account = account

        logger.info(f"[acme] Using account {account.uri}")
        self._client = client
        return client

    # -------------------------
    # AcmeClient
    # -------------------------

    def create_order(self, domains: List[str], private_key_pem: str) -> AcmeOrder:
        with self._lock:
            client = self._registered_client()
            with acme_errors("new order"):
                order = client.new_order(build_csr(domains, private_key_pem))

            challenges = []
            for authorization in order.authorizations:
                body = authorization.body
                name = body.identifier.value
                if body.wildcard:
                    name = f"*.{name}"

                dns01 = next(
                    (c for c in body.challenges if isinstance(c.chall, acme.challenges.DNS01)),
                    None,
                )
                if dns01 is None:
                    raise AcmeOrderInvalid(f"CA offered no dns-01 challenge for {name}")

                challenges.append(AcmeChallenge(
                    domain=name,
                    challenge_key=dns01.validation(self._account_key),
                    challenge_url=dns01.uri,
                ))

        logger.info(f"[acme] Created order {order.uri} with {len(challenges)} challenge(s)")
        return AcmeOrder(order_url=order.uri, challenges=tuple(challenges))

    def validate_challenge(self, challenge_url: str) -> str:
        with self._lock:
            client = self._registered_client()
            with acme_errors("challenge lookup"):
                challenge = acme.messages.ChallengeBody.from_json(client._post_as_get(challenge_url).json())

            status = challenge.status
            if status == acme.messages.STATUS_PENDING:
                # Tell the CA the record is in place
                with acme_errors("challenge response"):
                    answered = client.answer_challenge(challenge, challenge.response(self._account_key))
                status = answered.body.status

        if status == acme.messages.STATUS_INVALID:
            logger.warning(f"[acme] Challenge {challenge_url} invalid: {challenge.error}")
        return status.name

    def finalize(self, order_url: str, domains: List[str], private_key_pem: str) -> IssuedCertificate:
        with self._lock:
            client = self._registered_client()
            order = self._fetch_order(client, order_url)

            if order.status == acme.messages.STATUS_READY:
                resource = acme.messages.OrderResource(
                    uri=order_url,
                    body=order,
                    csr_pem=build_csr(domains, private_key_pem),
                )
                deadline = datetime.now() + timedelta(seconds=self.poll_attempts * self.poll_delay)
                with acme_errors("finalize"):
                    certificate_pem = client.finalize_order(resource, deadline).fullchain_pem
            else:
                # Finalized on an earlier attempt; wait for it, then download
                for _ in range(self.poll_attempts):
                    if order.status != acme.messages.STATUS_PROCESSING:
                        break
                    self._sleep(self.poll_delay)
                    order = self._fetch_order(client, order_url)

                status = order.status.name
                if status in ORDER_GONE:
                    raise AcmeOrderInvalid(f"Order {order_url} is {status}")
                if status != "valid" or not order.certificate:
                    raise AcmeOrderNotReady(f"Order {order_url} is {status}")

                with acme_errors("certificate download"):
                    certificate_pem = client._post_as_get(order.certificate).text

        valid_from, valid_to = certificate_validity(certificate_pem)
        logger.info(f"[acme] ✅ Certificate for {domains[0]} valid until {valid_to.isoformat()}")
        return IssuedCertificate(certificate_pem=certificate_pem, valid_from=valid_from, valid_to=valid_to)

    @staticmethod
    def _fetch_order(client: acme.client.ClientV2, order_url: str) -> acme.messages.Order:
        with acme_errors("order lookup"):
            return acme.messages.Order.from_json(client._post_as_get(order_url).json())
