from .account import Account, AccountStatus
from .authorization import Authorization, AuthorizationStatus
from .certificate import Certificate, CertificateStatus
from .challenge import Challenge, ChallengeStatus, ChallengeType
from .identifier import Identifier, IdentifierType
from .order import Order, OrderStatus

__all__ = [
    "Account",
    "AccountStatus",
    "Challenge",
    "ChallengeStatus",
    "ChallengeType",
    "Certificate",
    "CertificateStatus",
    "Authorization",
    "AuthorizationStatus",
    "Identifier",
    "IdentifierType",
    "Order",
    "OrderStatus",
]
