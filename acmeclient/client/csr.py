import typing

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509 import NameOID

from acmeclient.client.exceptions import ClientError
from acmeclient.client.keys import KeyMaterial

SUBJECT_ATTRIBUTES = {
    "C": NameOID.COUNTRY_NAME,
    "ST": NameOID.STATE_OR_PROVINCE_NAME,
    "L": NameOID.LOCALITY_NAME,
    "O": NameOID.ORGANIZATION_NAME,
    "OU": NameOID.ORGANIZATIONAL_UNIT_NAME,
    "emailAddress": NameOID.EMAIL_ADDRESS,
}
"""Additional subject attributes that may be requested, keyed by their short name."""


class CsrBuilder:
    """Builds PKCS#10 certificate signing requests for order finalization.

    A CSR for a single domain only carries the domain as its common name.
    With multiple domains, the first one becomes the common name and all of them are listed in a
    *subjectAltName* extension.
    CSRs are signed using SHA-256.
    """

    def build(
        self,
        domains: typing.Sequence[str],
        key: typing.Union[KeyMaterial, str, bytes, typing.Any],
        subject_extra: typing.Mapping[str, str] = None,
    ) -> x509.CertificateSigningRequest:
        """Builds and signs a CSR.

        :param domains: The requested domains, the first one is used as the common name.
        :param key: The certificate's private key as :class:`~acmeclient.client.keys.KeyMaterial`, PEM or
            :mod:`cryptography` private key.
        :param subject_extra: Additional subject attributes, e.g. *{"O": "Example Org", "C": "DE"}*.
        :raises: :class:`~acmeclient.client.exceptions.ClientError` If the key cannot be used or the CSR
            cannot be built.
        :return: The signed CSR.
        """
        if not domains:
            raise ClientError("At least one domain is required to build a CSR")

        private_key = self._private_key(key)

        unsupported = set(subject_extra or {}) - SUBJECT_ATTRIBUTES.keys()
        if unsupported:
            raise ClientError(f"Unsupported subject attributes: {', '.join(sorted(unsupported))}")

        try:
            attributes = [x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]
            attributes.extend(
                x509.NameAttribute(SUBJECT_ATTRIBUTES[name], value)
                for name, value in (subject_extra or {}).items()
            )

            builder = x509.CertificateSigningRequestBuilder().subject_name(x509.Name(attributes))

            if len(domains) > 1:
                builder = builder.add_extension(
                    x509.SubjectAlternativeName([x509.DNSName(domain) for domain in domains]),
                    critical=False,
                )

            return builder.sign(private_key, hashes.SHA256())
        except (ValueError, TypeError) as e:
            raise ClientError(f"Could not build CSR: {e}") from e

    @staticmethod
    def to_der(csr: x509.CertificateSigningRequest) -> bytes:
        return csr.public_bytes(serialization.Encoding.DER)

    @staticmethod
    def to_pem(csr: x509.CertificateSigningRequest) -> str:
        return csr.public_bytes(serialization.Encoding.PEM).decode()

    @staticmethod
    def _private_key(key):
        if isinstance(key, KeyMaterial):
            return key.private_key
        if isinstance(key, (str, bytes)):
            return KeyMaterial.from_pem(key).private_key
        return key
