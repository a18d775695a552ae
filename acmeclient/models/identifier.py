import enum
import uuid
from dataclasses import dataclass, field


class IdentifierType(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    DNS = "dns"


@dataclass
class Identifier:
    """An identifier that an order requests a certificate for."""

    order_id: uuid.UUID
    value: str
    type: IdentifierType = IdentifierType.DNS
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def is_wildcard(self) -> bool:
        return self.value.startswith("*.")

    def serialize(self) -> dict:
        return {"type": self.type.value, "value": self.value}
