import abc
import logging
import typing

from pydantic_settings import BaseSettings

from acmeclient.models import ChallengeType, Challenge, Identifier
from acmeclient.plugin_base import PluginRegistry

logger = logging.getLogger(__name__)


class ChallengeSolver(abc.ABC):
    """An abstract base class for DNS collaborators that publish challenge records.

    The client only computes the name and value of the *_acme-challenge* TXT record
    (see :meth:`~acmeclient.models.Challenge.dns_record`), publishing it is left to implementations
    of :meth:`complete_challenge` and :meth:`cleanup_challenge`.
    Implementations must also be registered with the plugin registry via
    :meth:`~acmeclient.plugin_base.PluginRegistry.register_plugin`, so that configuration files can refer
    to them by name.
    """

    SUPPORTED_CHALLENGES: typing.Iterable[ChallengeType]
    """The types of challenges that the challenge solver implementation supports."""

    class Config(BaseSettings, extra="forbid"):
        type: typing.Literal["none"] = "none"

    def __init__(self, cfg: Config = None):
        self.config = cfg

    @abc.abstractmethod
    async def complete_challenge(self, identifier: Identifier, challenge: Challenge):
        """Publishes the DNS record for the given challenge.

        This method should publish the record and then delay returning until the server is allowed to
        check for it, i.e. until the record has propagated.

        :param identifier: The identifier that is associated with the challenge.
        :param challenge: The prepared challenge, see :meth:`~acmeclient.models.Challenge.dns_record`.
        :raises: :class:`~acmeclient.client.exceptions.CouldNotCompleteChallenge`
            If the record could not be published.
        """
        pass

    @abc.abstractmethod
    async def cleanup_challenge(self, identifier: Identifier, challenge: Challenge):
        """Removes the DNS record that was published for the given challenge.

        It is called once the challenge is complete, whether it succeeded or not.
        This method should not assume that the record was published, meaning it should silently return
        if there is nothing to clean up.

        :param identifier: The identifier that is associated with the challenge.
        :param challenge: The challenge to clean up after.
        """
        pass


@PluginRegistry.register_plugin("dummy")
class DummySolver(ChallengeSolver):
    """Dummy challenge solver that does not actually publish any records."""

    SUPPORTED_CHALLENGES = frozenset([ChallengeType.DNS_01])
    """The types of challenges that the solver supports."""

    class Config(ChallengeSolver.Config):
        type: typing.Literal["dummy"] = "dummy"

    async def complete_challenge(self, identifier: Identifier, challenge: Challenge) -> None:
        """Does not publish the record, only logs the mock attempt."""
        record = challenge.dns_record()
        logger.debug(
            "(not) publishing %s record %s=%s for identifier %s",
            record["type"],
            record["name"],
            record["value"],
            identifier.value,
        )

    async def cleanup_challenge(self, identifier: Identifier, challenge: Challenge) -> None:
        """Does not remove anything, only logs the mock attempt."""
        logger.debug("(not) removing record %s", challenge.dns_record_name)
