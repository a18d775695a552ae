import hashlib
import logging

from acmeclient import util
from acmeclient.client.base import Engine, decode_timestamp, poll_until
from acmeclient.client.challenge_solver import ChallengeSolver
from acmeclient.client.exceptions import ClientError, CouldNotCompleteChallenge, PollingException
from acmeclient.client.keys import KeyMaterial
from acmeclient.models import Account, Authorization, Challenge, ChallengeStatus, ChallengeType

logger = logging.getLogger(__name__)

DNS_RECORD_PREFIX = "_acme-challenge."


def key_authorization(token: str, key: KeyMaterial) -> str:
    """Computes the key authorization of a challenge token.

    See `8.1. Key Authorizations <https://tools.ietf.org/html/rfc8555#section-8.1>`_.

    :param token: The challenge's token.
    :param key: The account key.
    :return: The token and the key's JWK thumbprint, joined by a dot.
    """
    return f"{token}.{key.thumbprint()}"


def dns_record_name(domain: str) -> str:
    """Returns the name of the TXT record to publish for the given domain.

    Wildcard domains are validated at their base domain, so a leading *\\*.* is dropped.
    """
    if domain.startswith("*."):
        domain = domain[2:]

    return DNS_RECORD_PREFIX + domain


def dns_record_value(key_authorization: str) -> str:
    """Returns the base64url encoded SHA-256 digest of the key authorization."""
    return util.b64url(hashlib.sha256(key_authorization.encode()).digest())


def derive_dns_material(challenge: Challenge, domain: str, key: KeyMaterial) -> Challenge:
    challenge.key_authorization = key_authorization(challenge.token, key)
    challenge.dns_record_name = dns_record_name(domain)
    challenge.dns_record_value = dns_record_value(challenge.key_authorization)
    return challenge


def apply_challenge_object(challenge: Challenge, challenge_obj: dict) -> Challenge:
    """Overwrites the challenge's server-controlled fields with those of the server's challenge object."""
    if not isinstance(challenge_obj, dict):
        raise ClientError("The server returned a malformed challenge object")

    if status := challenge_obj.get("status"):
        challenge.status = ChallengeStatus(status)
    if token := challenge_obj.get("token"):
        challenge.token = token
    if "validated" in challenge_obj:
        challenge.validated = decode_timestamp(challenge_obj["validated"])
    challenge.error = challenge_obj.get("error")

    return challenge


class ChallengeEngine(Engine):
    """Prepares, submits and tracks *dns-01* challenges.

    See `8.4. DNS Challenge <https://tools.ietf.org/html/rfc8555#section-8.4>`_.
    """

    POLL_ATTEMPTS = 10
    POLL_INTERVAL = 5.0

    key_authorization = staticmethod(key_authorization)
    dns_record_name = staticmethod(dns_record_name)
    dns_record_value = staticmethod(dns_record_value)

    def prepare_dns_challenge(
        self, account: Account, authorization: Authorization, challenge: Challenge
    ) -> Challenge:
        """Derives the key authorization and DNS record of the challenge from its token and the account key.

        :raises: :class:`~acmeclient.client.exceptions.ClientError` If the challenge is not a *dns-01*
            challenge or has no token.
        :return: The prepared challenge.
        """
        if challenge.type != ChallengeType.DNS_01:
            raise ClientError(f"Unsupported challenge type {challenge.type.value}")
        if not challenge.token:
            raise ClientError(f"Challenge {challenge.url} has no token")

        derive_dns_material(challenge, authorization.identifier.value, self._key_of(account))
        logger.debug(
            "Prepared challenge %s: %s TXT %s",
            challenge.url,
            challenge.dns_record_name,
            challenge.dns_record_value,
        )
        return challenge

    async def respond_to_challenge(self, account: Account, challenge: Challenge) -> Challenge:
        """Tells the server that the challenge is ready for validation.

        The payload is an empty JSON object, as required by the protocol.
        """
        key, kid = self._credentials(account)

        async with self._operation(
            "challenge_respond",
            "Responded to challenge",
            "Responding to challenge failed",
            entity_type="challenge",
            entity_id=challenge.id,
            challenge_url=challenge.url,
        ) as context:
            challenge_obj = await self.dispatcher.post(challenge.url, {}, key, kid)
            apply_challenge_object(challenge, challenge_obj)
            context["status"] = challenge.status.value

        return challenge

    async def check_challenge_status(self, account: Account, challenge: Challenge) -> Challenge:
        async with self._operation(
            "challenge_check",
            "Checked challenge status",
            "Checking challenge status failed",
            entity_type="challenge",
            entity_id=challenge.id,
            challenge_url=challenge.url,
        ) as context:
            apply_challenge_object(challenge, await self._fetch(account, challenge.url))
            context["status"] = challenge.status.value

        return challenge

    async def complete_challenge(
        self,
        account: Account,
        authorization: Authorization,
        challenge: Challenge,
        solver: ChallengeSolver,
        *,
        attempts: int = POLL_ATTEMPTS,
        interval: float = POLL_INTERVAL,
    ) -> Challenge:
        """Runs a pending challenge to completion.

        The challenge is prepared, its record published through the solver and its validation requested.
        Its status is then polled until it becomes valid.
        The solver is asked to clean up in any case.

        :param account: The account that owns the authorization.
        :param authorization: The authorization the challenge belongs to.
        :param challenge: The pending challenge.
        :param solver: Publishes and removes the DNS record.
        :param attempts: Number of status checks after the initial one.
        :param interval: Seconds to wait between status checks.
        :raises:

            * :class:`~acmeclient.client.exceptions.ClientError` If the challenge is not pending.
            * :class:`~acmeclient.client.exceptions.CouldNotCompleteChallenge` If the challenge became invalid.
            * :class:`~acmeclient.client.exceptions.PollingException` If the challenge did not become valid
              in time.

        :return: The valid challenge.
        """
        if challenge.status != ChallengeStatus.PENDING:
            raise ClientError(
                f"Challenge {challenge.url} is {challenge.status.value}, only pending challenges can be completed"
            )

        self.prepare_dns_challenge(account, authorization, challenge)

        try:
            await solver.complete_challenge(authorization.identifier, challenge)
            await self.respond_to_challenge(account, challenge)
            await self.wait_for_validation(account, challenge, attempts=attempts, interval=interval)
        finally:
            await solver.cleanup_challenge(authorization.identifier, challenge)

        return challenge

    async def wait_for_validation(
        self,
        account: Account,
        challenge: Challenge,
        *,
        attempts: int = POLL_ATTEMPTS,
        interval: float = POLL_INTERVAL,
    ) -> Challenge:
        """Polls the status of a challenge that has already been responded to until it is valid.

        This allows resuming a challenge that is still *processing*, e.g. after an interrupted workflow.

        :raises:

            * :class:`~acmeclient.client.exceptions.CouldNotCompleteChallenge` If the challenge became invalid.
            * :class:`~acmeclient.client.exceptions.PollingException` If the challenge did not become valid
              in time.

        :return: The valid challenge.
        """
        try:
            return await poll_until(
                self.check_challenge_status,
                account,
                challenge,
                predicate=lambda c: c.is_valid,
                negative_predicate=lambda c: c.is_invalid,
                delay=interval,
                max_tries=attempts,
            )
        except PollingException as e:
            if challenge.is_invalid:
                raise CouldNotCompleteChallenge(challenge) from e
            raise
