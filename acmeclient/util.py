import re
import typing
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter

import josepy
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa, ec
from cryptography.x509 import NameOID

KEY_FILE_MODE = 0o600

CERTIFICATE_RE = re.compile(
    r"-----BEGIN CERTIFICATE-----.*?-----END CERTIFICATE-----", re.DOTALL
)
"""Matches a single PEM encoded certificate block."""


def b64url(data: bytes) -> str:
    """Encodes the given bytes as unpadded base64url text.

    :param data: The bytes to encode.
    :return: The encoded string.
    """
    return josepy.b64.b64encode(data).decode()


def generate_rsa_key(path: Path = None, key_size=2048) -> rsa.RSAPrivateKey:
    """Generates an RSA private key and optionally saves it to the given path as PEM.

    :param path: The path to write the PEM-serialized key to.
    :param key_size: The RSA key size.
    :return: The generated private key.
    """
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)

    if path:
        write_private_key(private_key, path)

    return private_key


def generate_ec_key(path: Path = None, key_size=256) -> ec.EllipticCurvePrivateKey:
    """Generates an EC private key and optionally saves it to the given path as PEM.

    :param path: The path to write the PEM-serialized key to.
    :param key_size: The EC key size.
    :return: The generated private key.
    """
    curve = getattr(ec, f"SECP{key_size}R1")
    private_key = ec.generate_private_key(curve())

    if path:
        write_private_key(private_key, path)

    return private_key


def private_key_to_pem(private_key) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


def write_private_key(private_key, path: Path) -> None:
    path.touch(KEY_FILE_MODE) if not path.exists() else path.chmod(KEY_FILE_MODE)

    with open(path, "w") as pem_out:
        pem_out.write(private_key_to_pem(private_key))


def names_of(
    obj: typing.Union[x509.Certificate, x509.CertificateSigningRequest],
    lower: bool = False,
) -> typing.List[str]:
    """Returns all names contained in the given certificate or CSR.

    The common name comes first, followed by the subject alternative names.
    Duplicates are dropped while the order of first appearance is kept.

    :param obj: The certificate or CSR whose names to extract.
    :param lower: True if the names should be returned in lowercase.
    :return: List of the contained DNS names.
    """
    names = [v.value for v in obj.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]

    try:
        names.extend(
            obj.extensions.get_extension_for_class(
                x509.SubjectAlternativeName
            ).value.get_values_for_type(x509.DNSName)
        )
    except x509.ExtensionNotFound:
        pass

    return list(dict.fromkeys(name.lower() if lower else name for name in names))


def common_name_of(name: x509.Name) -> typing.Optional[str]:
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return attributes[0].value if attributes else None


def pem_split(pem: str) -> typing.List[str]:
    """Extracts all certificate blocks from a PEM encoded string.

    :param pem: The concatenated PEM encoded certificates.
    :return: The PEM text of every certificate block, in order of appearance.
    """
    return CERTIFICATE_RE.findall(pem)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PerformanceMeasure:
    """Async context manager that measures the wall time spent inside its block."""

    def __init__(self):
        self.begin = None
        self.end = None

    async def __aenter__(self):
        self.begin = perf_counter()
        return self

    async def __aexit__(self, type, value, traceback):
        self.end = perf_counter()

    @property
    def duration(self) -> float:
        end = self.end if self.end is not None else perf_counter()
        return end - self.begin

    @property
    def duration_ms(self) -> float:
        return round(self.duration * 1000, 2)
