#dns_engine/config.py

from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


LETS_ENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"
LETS_ENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"


class Settings(BaseSettings):
    """Application configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    environment: str = "development"

    # Records
    root_domain: str = "example.com"
    user_dns_record_limit: Optional[int] = None  # unset disables the quota
    record_validity_months: int = 6
    record_ttl: int = 60

    # DNS provider ("route53" or "memory")
    dns_provider: str = "memory"
    aws_route53_hosted_zone_id: str = ""
    aws_region: Optional[str] = None

    # Reconciliation
    reconcile_poll_interval: float = 5.0
    reconcile_force_interval: float = 3600.0
    expiry_sweep_interval: float = 3600.0

    # ACME
    acme_directory_url: str = LETS_ENCRYPT_STAGING
    acme_contact_email: str = ""
    acme_account_key_path: str = "./data/acme-account-key.pem"
    acme_poll_attempts: int = 10
    acme_poll_delay: float = 2.0

    # DNS verification (None = only in production)
    dns_verification_enabled: Optional[bool] = None
    dns_resolver_nameservers: str = ""  # comma-separated
    dns_lookup_timeout: float = 5.0

    # Stage worker
    worker_id: str = "worker-1"
    worker_poll_interval: float = 2.0
    worker_max_slots: int = 4
    job_lease_seconds: int = 120

    # Retry budgets per stage
    retry_base_delay: float = 10.0
    retry_backoff_factor: float = 3.0
    retry_max_delay: float = 600.0
    order_max_attempts: int = 5
    dns_wait_max_attempts: int = 12
    finalize_max_attempts: int = 5

    @field_validator("user_dns_record_limit", mode="before")
    @classmethod
    def _empty_limit_is_unset(cls, value):
        if value == "":
            return None
        return value

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def verify_dns(self) -> bool:
        if self.dns_verification_enabled is not None:
            return self.dns_verification_enabled
        return self.is_production

    @property
    def nameservers(self) -> List[str]:
        return [ns.strip() for ns in self.dns_resolver_nameservers.split(",") if ns.strip()]


settings = Settings()
