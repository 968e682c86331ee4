# dns_engine/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class DnsEngineError(Exception):
    """Base class for all dns engine errors."""
    pass


# -----------------------------
# Validation / Domain Errors
# -----------------------------

class RecordValidationError(DnsEngineError):
    """Invalid record input. Nothing was persisted."""
    pass


class DuplicateRecordError(RecordValidationError):
    """A CNAME already exists for this (owner, subdomain)."""
    pass


class QuotaExceededError(RecordValidationError):
    """Owner has reached the configured record limit."""
    pass


class DeactivatedAccountError(DnsEngineError):
    """Operation refused because the owning account is deactivated."""
    pass


class InvalidStateTransition(DnsEngineError):
    """Illegal certificate status change."""
    pass


# -----------------------------
# Lookup Errors
# -----------------------------

class RecordNotFound(DnsEngineError):
    pass


class CertificateNotFound(DnsEngineError):
    pass


class UserNotFound(DnsEngineError):
    pass


# -----------------------------
# External Faults
# -----------------------------

class TransientProviderFault(DnsEngineError):
    """Temporary failure talking to DNS, the DNS provider or the CA. Retry later."""
    pass


class ProviderError(TransientProviderFault):
    """DNS provider call failed (network, auth, throttling)."""
    pass


class ChallengeLookupError(TransientProviderFault):
    """Resolver infrastructure failed while looking up a challenge record."""
    pass


class AcmeError(TransientProviderFault):
    """CA unreachable or returned a retryable error."""
    pass


class AcmeOrderNotReady(AcmeError):
    """Order exists but is not ready to be finalized yet."""
    pass


class UnrecoverableFault(DnsEngineError):
    """Permanent failure. Must never be retried."""
    pass


class AcmeOrderInvalid(UnrecoverableFault):
    """The CA marked the order or one of its challenges invalid."""
    pass


class AcmeRequestRejected(UnrecoverableFault):
    """The CA rejected a request for a non-transient reason."""
    pass


# -----------------------------
# Queue / Persistence Errors
# -----------------------------

class PersistenceError(DnsEngineError):
    pass


class JobConcurrencyError(PersistenceError):
    """Job row changed underneath the caller."""
    pass


class JobLeaseError(PersistenceError):
    """Lease missing, expired, or owned by another worker."""
    pass
