from .client import AcmeClient
from .challenge_solver import DummySolver, ChallengeSolver
from .exceptions import (
    AcmeClientException,
    AcmeError,
    ClientError,
    CouldNotCompleteChallenge,
    PollingException,
    RateLimitError,
    ServerError,
    ValidationError,
)
from .keys import KeyMaterial

__all__ = [
    "AcmeClient",
    "DummySolver",
    "ChallengeSolver",
    "KeyMaterial",
    "AcmeClientException",
    "AcmeError",
    "ClientError",
    "CouldNotCompleteChallenge",
    "PollingException",
    "RateLimitError",
    "ServerError",
    "ValidationError",
]
