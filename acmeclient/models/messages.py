import enum
import typing

import acme.fields
import josepy
import pyrfc3339

from acmeclient.models.account import AccountStatus
from acmeclient.models.authorization import AuthorizationStatus


class RevocationReason(enum.Enum):
    """Certificate revocation reasons.

    Defined in `5.3.1. Reason Code <https://tools.ietf.org/html/rfc5280#section-5.3.1>`_ of RFC 5280.
    """

    unspecified = 0
    keyCompromise = 1
    cACompromise = 2
    affiliationChanged = 3
    superseded = 4
    cessationOfOperation = 5
    certificateHold = 6
    # value 7 is unused
    removeFromCRL = 8
    privilegeWithdrawn = 9
    aACompromise = 10


def _encode_status(status):
    return status.value if isinstance(status, enum.Enum) else status


class RFC3339Field(acme.fields.RFC3339Field):
    """RFC 3339 field that keeps the fractional seconds of a timestamp, if there are any.

    Naive datetimes are taken to be in UTC.
    """

    @classmethod
    def default_encoder(cls, value: "datetime.datetime") -> str:
        return pyrfc3339.generate(value, accept_naive=True, microseconds=bool(value.microsecond))


class NewAccount(josepy.JSONObjectWithFields):
    """Message type for account registration and lookup requests."""

    contact: typing.List[str] = josepy.Field("contact", omitempty=True)
    """The account's contact URLs, e.g. *mailto:admin@example.org*."""
    terms_of_service_agreed: bool = josepy.Field("termsOfServiceAgreed", omitempty=True)
    """Whether the client agrees to the CA's terms of service."""
    only_return_existing: bool = josepy.Field("onlyReturnExisting", omitempty=True)
    """If set, the server only looks up an existing account for the key and does not create one."""


class AccountUpdate(josepy.JSONObjectWithFields):
    """Message type for account update and deactivation requests."""

    contact: typing.List[str] = josepy.Field("contact", omitempty=True)
    """The account's new contact URLs."""
    status: AccountStatus = josepy.Field(
        "status", decoder=AccountStatus, encoder=_encode_status, omitempty=True
    )
    """The account's new status."""


class AuthorizationUpdate(josepy.JSONObjectWithFields):
    """Message type for authorization deactivation requests."""

    status: AuthorizationStatus = josepy.Field(
        "status", decoder=AuthorizationStatus, encoder=_encode_status, omitempty=True
    )
    """The authorization's new status."""


class NewOrder(josepy.JSONObjectWithFields):
    """Message type for new order requests."""

    identifiers: typing.List[typing.Dict[str, str]] = josepy.Field(
        "identifiers", omitempty=True
    )
    """The requested identifiers."""
    not_before: "datetime.datetime" = RFC3339Field("notBefore", omitempty=True)
    """The requested *notBefore* field in the certificate."""
    not_after: "datetime.datetime" = RFC3339Field("notAfter", omitempty=True)
    """The requested *notAfter* field in the certificate."""

    @classmethod
    def from_data(
        cls,
        identifiers: typing.Union[
            typing.List[typing.Dict[str, str]], typing.List[str]
        ] = None,
        not_before: "datetime.datetime" = None,
        not_after: "datetime.datetime" = None,
    ) -> "NewOrder":
        """Class factory that takes care of parsing the list of *identifiers*.

        :param identifiers: Either a :class:`list` of :class:`dict` where each dict consists of the keys *type* \
            and *value*, or a :class:`list` of :class:`str` that represent the DNS names.
        :param not_before: The requested *notBefore* field in the certificate.
        :param not_after: The requested *notAfter* field in the certificate.
        :return: The new order object.
        """
        kwargs = {}

        if type(identifiers[0]) is dict:
            kwargs["identifiers"] = identifiers
        elif type(identifiers[0]) is str:
            kwargs["identifiers"] = [
                dict(type="dns", value=identifier) for identifier in identifiers
            ]
        else:
            raise ValueError(
                "Could not decode identifiers list. Must be either List(str) or List(dict) where "
                "the dict has two keys 'type' and 'value'"
            )

        kwargs["not_before"] = not_before
        kwargs["not_after"] = not_after

        return cls(**kwargs)


class CertificateRequest(josepy.JSONObjectWithFields):
    """Message type for order finalization requests."""

    csr: bytes = josepy.Field(
        "csr", decoder=josepy.decode_b64jose, encoder=josepy.encode_b64jose
    )
    """The DER encoded certificate signing request."""


class Revocation(josepy.JSONObjectWithFields):
    """Message type for certificate revocation requests."""

    certificate: bytes = josepy.Field(
        "certificate", decoder=josepy.decode_b64jose, encoder=josepy.encode_b64jose
    )
    """The DER encoded certificate to be revoked."""
    reason: RevocationReason = josepy.Field(
        "reason",
        decoder=RevocationReason,
        encoder=lambda reason: reason.value,
        omitempty=True,
    )
    """The reason for the revocation."""


class KeyChange(josepy.JSONObjectWithFields):
    """Inner payload of an account key rollover request."""

    account: str = josepy.Field("account")
    """The URL of the account whose key is changed."""
    old_key: dict = josepy.Field("oldKey")
    """The account's current public key as a JWK."""
