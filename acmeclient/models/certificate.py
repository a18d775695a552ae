import enum
import typing
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..util import utcnow


class CertificateStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    VALID = "valid"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass
class Certificate:
    """An issued certificate together with its chain.

    The :attr:`domains` are taken from the parsed leaf certificate, not from the order that requested it.
    """

    order_id: uuid.UUID
    certificate_pem: str
    chain_pem: str = ""
    private_key_pem: typing.Optional[str] = None
    status: CertificateStatus = CertificateStatus.VALID
    serial_number: typing.Optional[str] = None
    fingerprint: typing.Optional[str] = None
    """Hex encoded SHA-256 digest of the leaf's DER encoding."""
    issuer: typing.Optional[str] = None
    """Common name of the issuer."""
    not_before: typing.Optional[datetime] = None
    not_after: typing.Optional[datetime] = None
    domains: typing.List[str] = field(default_factory=list)
    revoked_at: typing.Optional[datetime] = None
    revocation_reason: typing.Optional[int] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def is_expired(self) -> bool:
        return self.not_after is not None and self.not_after <= utcnow()

    @property
    def is_revoked(self) -> bool:
        return self.status == CertificateStatus.REVOKED

    def is_expiring_within(self, days: int) -> bool:
        return self.not_after is not None and self.not_after <= utcnow() + timedelta(days=days)

    def days_until_expiry(self) -> typing.Optional[int]:
        if self.not_after is None:
            return None

        return (self.not_after - utcnow()).days

    @property
    def full_chain_pem(self) -> str:
        """The leaf certificate followed by the chain."""
        if not self.chain_pem:
            return self.certificate_pem

        return f"{self.certificate_pem}\n{self.chain_pem}"

    def contains_domain(self, domain: str) -> bool:
        return domain.lower() in (name.lower() for name in self.domains)
