import typing
from pathlib import Path

import josepy
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa, ec

from acmeclient import util
from acmeclient.client.exceptions import ClientError

EC_ALGORITHMS = {
    "secp256r1": josepy.jwa.ES256,
    "secp384r1": josepy.jwa.ES384,
    "secp521r1": josepy.jwa.ES512,
}
"""Signature algorithm matching each supported curve."""


class KeyMaterial:
    """An account key pair together with its JWK representation and signature algorithm.

    RSA keys sign with *RS256*. EC keys on P-256, P-384 and P-521 sign with *ES256*, *ES384* and *ES512*
    respectively, unless *sha256_only* is set, in which case every curve signs with SHA-256 and
    advertises *ES256*.

    :param private_key: The RSA or EC private key.
    :param sha256_only: Sign with SHA-256 regardless of the curve.
    :raises: :class:`~acmeclient.client.exceptions.ClientError` If the key type or curve is not supported.
    """

    def __init__(
        self,
        private_key: typing.Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey],
        *,
        sha256_only: bool = False,
    ):
        if isinstance(private_key, rsa.RSAPrivateKey):
            self._jwk = josepy.jwk.JWKRSA(key=private_key)
            self._alg = josepy.jwa.RS256
        elif isinstance(private_key, ec.EllipticCurvePrivateKey):
            if (alg := EC_ALGORITHMS.get(private_key.curve.name)) is None:
                raise ClientError(f"Unsupported elliptic curve {private_key.curve.name}")
            self._jwk = josepy.jwk.JWKEC(key=private_key)
            self._alg = josepy.jwa.ES256 if sha256_only else alg
        else:
            raise ClientError(f"Unsupported key type {type(private_key).__name__}")

        self._private_key = private_key

    @classmethod
    def from_pem(
        cls, pem: typing.Union[str, bytes], password: bytes = None, **kwargs
    ) -> "KeyMaterial":
        """Loads a PEM encoded private key.

        :param pem: The PEM encoded RSA or EC private key.
        :param password: The key's password, if it is encrypted.
        :raises: :class:`~acmeclient.client.exceptions.ClientError` If the key cannot be loaded.
        """
        if isinstance(pem, str):
            pem = pem.encode()

        try:
            private_key = serialization.load_pem_private_key(pem, password=password)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise ClientError(f"Could not load private key: {e}") from e

        return cls(private_key, **kwargs)

    @classmethod
    def from_file(cls, path: typing.Union[str, Path], **kwargs) -> "KeyMaterial":
        with open(path, "rb") as pem:
            return cls.from_pem(pem.read(), **kwargs)

    @classmethod
    def generate_rsa(cls, key_size: int = 2048, **kwargs) -> "KeyMaterial":
        return cls(util.generate_rsa_key(key_size=key_size), **kwargs)

    @classmethod
    def generate_ec(cls, key_size: int = 256, **kwargs) -> "KeyMaterial":
        return cls(util.generate_ec_key(key_size=key_size), **kwargs)

    @property
    def private_key(self):
        return self._private_key

    @property
    def jwk(self) -> josepy.jwk.JWK:
        return self._jwk

    @property
    def alg(self) -> josepy.jwa.JWASignature:
        """The JWS signature algorithm used with this key."""
        return self._alg

    def public_jwk(self) -> dict:
        """The public key as a JWK :class:`dict`, suitable for embedding in a protected header."""
        return self._jwk.public_key().to_json()

    def thumbprint(self) -> str:
        """Computes the key's JWK thumbprint as defined by RFC 7638.

        :return: The base64url encoded SHA-256 digest of the canonical public JWK.
        """
        return util.b64url(self._jwk.thumbprint())

    def sign(self, msg: bytes) -> bytes:
        return self._alg.sign(self._jwk.key, msg)

    def verify(self, msg: bytes, sig: bytes) -> bool:
        return self._alg.verify(self._jwk.public_key().key, msg, sig)

    def to_pem(self) -> str:
        return util.private_key_to_pem(self._private_key)
