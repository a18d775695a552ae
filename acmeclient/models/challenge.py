import enum
import typing
import uuid
from dataclasses import dataclass, field
from datetime import datetime

DNS_RECORD_TTL = 300


class ChallengeStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class ChallengeType(str, enum.Enum):
    """The types that a :class:`Challenge` can have.

    Subclassing :class:`str` simplifies json serialization using :func:`json.dumps`.
    Only :attr:`DNS_01` is acted upon by the client, the others are recognized so that they can be skipped.
    """

    HTTP_01 = "http-01"
    """The ACME *http-01* challenge type.
    See `8.3. HTTP Challenge <https://tools.ietf.org/html/rfc8555#section-8.3>`_"""
    DNS_01 = "dns-01"
    """The ACME *dns-01* challenge type.
    See `8.4. DNS Challenge <https://tools.ietf.org/html/rfc8555#section-8.4>`_"""
    TLS_ALPN_01 = "tls-alpn-01"
    """The ACME *tls-alpn-01* challenge type.
    See `RFC 8737 <https://tools.ietf.org/html/rfc8737>`_"""


@dataclass
class Challenge:
    """A challenge offered by the server for one authorization.

    :attr:`key_authorization`, :attr:`dns_record_name` and :attr:`dns_record_value` are derived locally
    from the :attr:`token` and the account key, everything else mirrors the server's challenge object.
    """

    authorization_id: uuid.UUID
    url: str
    type: ChallengeType = ChallengeType.DNS_01
    status: ChallengeStatus = ChallengeStatus.PENDING
    token: typing.Optional[str] = None
    key_authorization: typing.Optional[str] = None
    dns_record_name: typing.Optional[str] = None
    dns_record_value: typing.Optional[str] = None
    validated: typing.Optional[datetime] = None
    error: typing.Optional[dict] = None
    """The problem document sent by the server if validation failed."""
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    @property
    def is_valid(self) -> bool:
        return self.status == ChallengeStatus.VALID

    @property
    def is_processing(self) -> bool:
        return self.status == ChallengeStatus.PROCESSING

    @property
    def is_invalid(self) -> bool:
        return self.status == ChallengeStatus.INVALID

    def dns_record(self) -> dict:
        """Describes the TXT record that has to be published for this challenge.

        :return: :class:`dict` with the keys *type*, *name*, *value* and *ttl*.
        """
        return {
            "type": "TXT",
            "name": self.dns_record_name,
            "value": self.dns_record_value,
            "ttl": DNS_RECORD_TTL,
        }
