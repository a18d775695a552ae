import logging
import typing

from acmeclient.client.base import Engine, decode_timestamp
from acmeclient.client.challenge import apply_challenge_object, derive_dns_material
from acmeclient.client.exceptions import ClientError
from acmeclient.models import (
    Account,
    Authorization,
    AuthorizationStatus,
    Challenge,
    ChallengeType,
)
from acmeclient.models import messages

logger = logging.getLogger(__name__)


class AuthorizationEngine(Engine):
    """Mirrors the server's authorizations and their *dns-01* challenges.

    See `7.5. Identifier Authorization <https://tools.ietf.org/html/rfc8555#section-7.5>`_.
    """

    async def fetch_authorization_details(
        self, account: Account, authorization: Authorization
    ) -> Authorization:
        """Fetches the authorization and updates its status, expiry and challenges.

        Only *dns-01* challenges are mirrored, other challenge types are skipped.
        Challenges are matched to existing local ones by their URL, unknown ones are added.
        The key authorization and DNS record of each challenge are derived from the account key.

        :param account: The account that owns the authorization.
        :param authorization: The authorization to fetch.
        :raises: :class:`~acmeclient.client.exceptions.AcmeError` If the authorization could not be fetched.
        :return: The updated authorization.
        """
        key = self._key_of(account)

        async with self._operation(
            "authorization_fetch",
            "Fetched authorization",
            "Fetching authorization failed",
            entity_type="authorization",
            entity_id=authorization.id,
            authorization_url=authorization.url,
        ) as context:
            authorization_obj = await self._fetch(account, authorization.url)
            if not isinstance(authorization_obj, dict):
                raise ClientError("The server returned a malformed authorization object")

            if status := authorization_obj.get("status"):
                authorization.status = AuthorizationStatus(status)
            if "expires" in authorization_obj:
                authorization.expires = decode_timestamp(authorization_obj["expires"])
            authorization.wildcard = bool(
                authorization_obj.get("wildcard", authorization.identifier.is_wildcard)
            )

            for challenge_obj in authorization_obj.get("challenges", []):
                if challenge_obj.get("type") != ChallengeType.DNS_01.value:
                    logger.debug("Skipping challenge of type %s", challenge_obj.get("type"))
                    continue

                if (challenge := authorization.challenge_by_url(challenge_obj["url"])) is None:
                    challenge = Challenge(
                        authorization_id=authorization.id,
                        url=challenge_obj["url"],
                        type=ChallengeType.DNS_01,
                    )
                    authorization.challenges.append(challenge)

                apply_challenge_object(challenge, challenge_obj)
                if challenge.token:
                    derive_dns_material(challenge, authorization.identifier.value, key)

            context["status"] = authorization.status.value

        return authorization

    async def deactivate_authorization(
        self, account: Account, authorization: Authorization
    ) -> Authorization:
        """Deactivates the authorization, e.g. to relinquish the authorization of an identifier."""
        key, kid = self._credentials(account)

        async with self._operation(
            "authorization_deactivate",
            "Deactivated authorization",
            "Authorization deactivation failed",
            entity_type="authorization",
            entity_id=authorization.id,
            authorization_url=authorization.url,
        ):
            authorization_obj = await self.dispatcher.post(
                authorization.url,
                messages.AuthorizationUpdate(status=AuthorizationStatus.DEACTIVATED),
                key,
                kid,
            )
            status = (
                authorization_obj.get("status") if isinstance(authorization_obj, dict) else None
            )
            authorization.status = AuthorizationStatus(status or AuthorizationStatus.DEACTIVATED)

        return authorization

    @staticmethod
    def find_by_domain(
        authorizations: typing.Iterable[Authorization], domain: str
    ) -> typing.List[Authorization]:
        return [
            authorization
            for authorization in authorizations
            if authorization.identifier.value.lower() == domain.lower()
        ]

    @staticmethod
    def find_by_status(
        authorizations: typing.Iterable[Authorization], status: AuthorizationStatus
    ) -> typing.List[Authorization]:
        return [authorization for authorization in authorizations if authorization.status == status]

    @staticmethod
    def is_authorization_valid(authorization: Authorization) -> bool:
        return authorization.is_valid()

    @staticmethod
    def get_dns_challenge(authorization: Authorization) -> typing.Optional[Challenge]:
        return authorization.dns_challenge()
