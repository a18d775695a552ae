import enum
import typing
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from .challenge import Challenge, ChallengeType, ChallengeStatus
from .identifier import Identifier
from ..util import utcnow


class AuthorizationStatus(str, enum.Enum):
    # subclassing str simplifies json serialization using json.dumps
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass
class Authorization:
    """The server's authorization of one identifier of an order."""

    order_id: uuid.UUID
    url: str
    identifier: Identifier
    status: AuthorizationStatus = AuthorizationStatus.PENDING
    expires: typing.Optional[datetime] = None
    wildcard: bool = False
    challenges: typing.List[Challenge] = field(default_factory=list)
    id: uuid.UUID = field(default_factory=uuid.uuid4)

    def is_expired(self) -> bool:
        return self.expires is not None and self.expires <= utcnow()

    def is_valid(self) -> bool:
        """Whether the authorization is valid and has not expired yet."""
        return self.status == AuthorizationStatus.VALID and not self.is_expired()

    def has_valid_challenge(self) -> bool:
        return any(challenge.status == ChallengeStatus.VALID for challenge in self.challenges)

    def dns_challenge(self) -> typing.Optional[Challenge]:
        """Returns the authorization's *dns-01* challenge, if the server offered one."""
        for challenge in self.challenges:
            if challenge.type == ChallengeType.DNS_01:
                return challenge

        return None

    def challenge_by_url(self, url: str) -> typing.Optional[Challenge]:
        return next((challenge for challenge in self.challenges if challenge.url == url), None)
