import logging
import typing
import uuid
from datetime import timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization

from acmeclient import util
from acmeclient.client.base import Engine
from acmeclient.client.exceptions import ClientError
from acmeclient.models import Account, Certificate, CertificateStatus, Order
from acmeclient.models.messages import Revocation, RevocationReason

logger = logging.getLogger(__name__)

ACTIVE_STATES = frozenset([CertificateStatus.VALID])


def normalize_chain_body(body) -> str:
    """Turns a certificate download response into a single PEM string.

    The body may be the PEM text itself, a list of PEM blocks or an object with a *certificate* member
    holding either of those.
    """
    if isinstance(body, dict):
        body = body.get("certificate")

    if isinstance(body, str):
        return body
    if isinstance(body, list) and all(isinstance(block, str) for block in body):
        return "\n".join(body)

    raise ClientError("The server returned an unrecognized certificate format")


def parse_chain(pem: str, order_id: uuid.UUID) -> Certificate:
    """Parses a PEM certificate chain.

    The first certificate block is the leaf, the remaining blocks make up the chain.
    Subject, issuer, validity and names are read from the leaf.

    :param pem: The concatenated PEM certificates.
    :param order_id: The id of the order the certificate was issued for.
    :raises: :class:`~acmeclient.client.exceptions.ClientError` If no certificate could be found or parsed.
    :return: The parsed certificate record.
    """
    blocks = util.pem_split(pem)
    if not blocks:
        raise ClientError("No certificate found in the downloaded chain")

    try:
        leaf = x509.load_pem_x509_certificate(blocks[0].encode())
    except ValueError as e:
        raise ClientError(f"Could not parse the leaf certificate: {e}") from e

    return Certificate(
        order_id=order_id,
        certificate_pem=blocks[0],
        chain_pem="\n".join(blocks[1:]),
        status=CertificateStatus.VALID,
        serial_number=format(leaf.serial_number, "x"),
        fingerprint=leaf.fingerprint(hashes.SHA256()).hex(),
        issuer=util.common_name_of(leaf.issuer),
        not_before=leaf.not_valid_before_utc,
        not_after=leaf.not_valid_after_utc,
        domains=util.names_of(leaf),
    )


class CertificateEngine(Engine):
    """Downloads, parses and revokes certificates.

    The query helpers only look at the given certificate records, they never contact the server.
    """

    parse_chain = staticmethod(parse_chain)

    async def download(self, account: Account, order: Order) -> Certificate:
        """Downloads the certificate of a valid order and attaches it to the order.

        :param account: The account that owns the order.
        :param order: The order, whose certificate URL must be known.
        :raises:

            * :class:`~acmeclient.client.exceptions.ClientError` If the order has no certificate URL or the
              response does not contain a certificate.
            * :class:`~acmeclient.client.exceptions.AcmeError` If the download failed.

        :return: The downloaded certificate.
        """
        if not order.certificate_url:
            raise ClientError("The order has no certificate URL, it has not been finalized yet")

        async with self._operation(
            "certificate_download",
            "Downloaded certificate",
            "Certificate download failed",
            entity_type="order",
            entity_id=order.id,
            certificate_url=order.certificate_url,
        ) as context:
            body = await self._fetch(account, order.certificate_url)
            certificate = parse_chain(normalize_chain_body(body), order.id)

            if order.certificate is not None:
                certificate.id = order.certificate.id
            certificate.private_key_pem = order.private_key_pem
            order.certificate = certificate

            context["serial_number"] = certificate.serial_number
            context["domains"] = certificate.domains

        return certificate

    async def revoke(
        self,
        account: Account,
        certificate: Certificate,
        reason: typing.Union[RevocationReason, int] = RevocationReason.unspecified,
    ) -> Certificate:
        """Revokes the certificate.

        Revoking a certificate that is already marked as revoked does not contact the server and returns
        the certificate unchanged.

        See `7.6. Certificate Revocation <https://tools.ietf.org/html/rfc8555#section-7.6>`_.

        :param account: The account that ordered the certificate.
        :param certificate: The certificate to revoke.
        :param reason: The revocation reason code.
        :raises: :class:`~acmeclient.client.exceptions.AcmeError` If the server refused the revocation.
        :return: The revoked certificate.
        """
        if certificate.is_revoked:
            logger.info("Certificate %s has already been revoked", certificate.serial_number)
            return certificate

        key, kid = self._credentials(account)
        reason = RevocationReason(reason)

        try:
            der = x509.load_pem_x509_certificate(certificate.certificate_pem.encode()).public_bytes(
                serialization.Encoding.DER
            )
        except ValueError as e:
            raise ClientError(f"Could not read the certificate: {e}") from e

        async with self._operation(
            "certificate_revoke",
            "Revoked certificate",
            "Certificate revocation failed",
            entity_type="certificate",
            entity_id=certificate.id,
            serial_number=certificate.serial_number,
            reason=reason.name,
        ):
            await self.dispatcher.post(
                "revokeCert", Revocation(certificate=der, reason=reason), key, kid
            )

            certificate.status = CertificateStatus.REVOKED
            certificate.revoked_at = util.utcnow()
            certificate.revocation_reason = reason.value

        return certificate

    @staticmethod
    def validate_certificate(certificate: Certificate) -> bool:
        """Checks that the certificate can be parsed, is active and has not expired."""
        try:
            x509.load_pem_x509_certificate(certificate.certificate_pem.encode())
        except ValueError:
            logger.debug("Certificate %s is not readable", certificate.id)
            return False

        return certificate.status in ACTIVE_STATES and not certificate.is_expired()

    @staticmethod
    def find_expiring(
        certificates: typing.Iterable[Certificate], days: int = 30
    ) -> typing.List[Certificate]:
        """Returns the active certificates that expire within the given number of days, e.g. to renew them."""
        deadline = util.utcnow() + timedelta(days=days)
        return [
            certificate
            for certificate in certificates
            if certificate.status in ACTIVE_STATES
            and certificate.not_after is not None
            and certificate.not_after <= deadline
        ]

    @staticmethod
    def find_by_domain(
        certificates: typing.Iterable[Certificate], domain: str
    ) -> typing.List[Certificate]:
        """Returns the certificates covering the domain, the one expiring last first."""
        matching = [certificate for certificate in certificates if certificate.contains_domain(domain)]
        return sorted(
            matching,
            key=lambda certificate: (
                certificate.not_after is not None,
                certificate.not_after.timestamp() if certificate.not_after else 0,
            ),
            reverse=True,
        )

    @staticmethod
    def find_valid(certificates: typing.Iterable[Certificate]) -> typing.List[Certificate]:
        """Returns the active, unexpired certificates, the one expiring first first."""
        return sorted(
            (
                certificate
                for certificate in certificates
                if certificate.status in ACTIVE_STATES and not certificate.is_expired()
            ),
            key=lambda certificate: (
                certificate.not_after is None,
                certificate.not_after.timestamp() if certificate.not_after else 0,
            ),
        )

    @staticmethod
    def find_by_status(
        certificates: typing.Iterable[Certificate], status: CertificateStatus
    ) -> typing.List[Certificate]:
        return [certificate for certificate in certificates if certificate.status == status]

    @staticmethod
    def find_by_order(
        certificates: typing.Iterable[Certificate], order: Order
    ) -> typing.Optional[Certificate]:
        return next((certificate for certificate in certificates if certificate.order_id == order.id), None)
