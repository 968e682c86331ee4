#dns_engine/api/container.py
from dns_engine import container
from dns_engine.certificates.service import CertificateService
from dns_engine.records.service import RecordService
from dns_engine.users.service import UserService


def get_record_service() -> RecordService:
    return container.record_service()


def get_certificate_service() -> CertificateService:
    return container.certificate_service()


def get_user_service() -> UserService:
    return container.user_service()
