import enum
import typing
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from .authorization import Authorization
from .certificate import Certificate
from .identifier import Identifier
from ..util import utcnow


class OrderStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


@dataclass
class Order:
    """A certificate order.

    The :attr:`status` only reflects the server's view as of the last fetch, it is never advanced locally.
    """

    account_id: uuid.UUID
    url: typing.Optional[str] = None
    finalize_url: typing.Optional[str] = None
    certificate_url: typing.Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    expires: typing.Optional[datetime] = None
    not_before: typing.Optional[datetime] = None
    not_after: typing.Optional[datetime] = None
    error: typing.Optional[dict] = None
    identifiers: typing.List[Identifier] = field(default_factory=list)
    authorizations: typing.List[Authorization] = field(default_factory=list)
    certificate: typing.Optional[Certificate] = None
    private_key_pem: typing.Optional[str] = None
    """Certificate key generated on finalization with an automatically built CSR."""
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def domains(self) -> typing.List[str]:
        return [identifier.value for identifier in self.identifiers]

    def is_expired(self) -> bool:
        return self.expires is not None and self.expires <= utcnow()

    def is_ready(self) -> bool:
        return self.status == OrderStatus.READY

    def is_invalid(self) -> bool:
        return self.status == OrderStatus.INVALID

    def all_authorizations_valid(self) -> bool:
        return bool(self.authorizations) and all(
            authorization.is_valid() for authorization in self.authorizations
        )
