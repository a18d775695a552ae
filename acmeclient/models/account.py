import enum
import typing
import uuid
from dataclasses import dataclass, field


class AccountStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    PENDING = "pending"
    VALID = "valid"
    DEACTIVATED = "deactivated"
    REVOKED = "revoked"


@dataclass
class Account:
    """An ACME account as mirrored by the client.

    The :attr:`account_url` is assigned by the server on registration and is used as the *kid*
    of every subsequent request.
    """

    server_url: str
    """The directory URL of the ACME server the account is registered with."""
    private_key_pem: typing.Optional[str] = None
    """The PEM encoded account key."""
    public_key_jwk: typing.Optional[dict] = None
    """The account's public key as a JWK."""
    account_url: typing.Optional[str] = None
    """The account's URL, only set after successful registration."""
    status: AccountStatus = AccountStatus.PENDING
    contacts: typing.List[str] = field(default_factory=list)
    terms_of_service_agreed: bool = False
    orders_url: typing.Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def is_deactivated(self) -> bool:
        return self.status == AccountStatus.DEACTIVATED

    @property
    def is_valid(self) -> bool:
        return self.status == AccountStatus.VALID

    def update(self, obj: dict) -> None:
        """Overwrites the account's status and contacts with those of the server's account object.

        :param obj: The account object as returned by the server.
        """
        if not isinstance(obj, dict):
            return

        if status := obj.get("status"):
            self.status = AccountStatus(status)
        if "contact" in obj:
            self.contacts = list(obj["contact"])
        if orders := obj.get("orders"):
            self.orders_url = orders
