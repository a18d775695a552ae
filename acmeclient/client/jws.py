import json
import typing

import acme.jws
import josepy

from acmeclient.client.keys import KeyMaterial

Payload = typing.Union[None, bytes, dict, josepy.JSONDeSerializable]


def encode_payload(payload: Payload) -> bytes:
    """Serializes a request payload.

    *None* results in the empty payload of a POST-as-GET request.

    :param payload: The payload to serialize.
    :return: The UTF-8 encoded JSON payload.
    """
    if payload is None:
        return b""
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, josepy.JSONDeSerializable):
        return payload.json_dumps().encode()
    return json.dumps(payload, separators=(",", ":")).encode()


class JWSEngine:
    """Builds and verifies the flattened JWS JSON serialization used for ACME requests.

    See `6.2. Request Authentication <https://tools.ietf.org/html/rfc8555#section-6.2>`_.
    """

    def sign(
        self,
        payload: Payload,
        url: str,
        nonce: typing.Optional[str],
        key: KeyMaterial,
        kid: str = None,
    ) -> acme.jws.JWS:
        """Signs the payload.

        The protected header contains the *alg*, the *url*, the *nonce* and either the *kid* or, if no kid
        is given, the public key as *jwk*.
        The nonce may only be omitted for the inner JWS of a key change request.

        :param payload: The request payload.
        :param url: The URL the request is sent to.
        :param nonce: The replay nonce as sent by the server.
        :param key: The key to sign with.
        :param kid: The account URL.
        :return: The JWS, whose :meth:`~josepy.JWS.json_dumps` yields the members *protected*, *payload*
            and *signature*.
        """
        return acme.jws.JWS.sign(
            encode_payload(payload),
            key=key.jwk,
            alg=key.alg,
            nonce=josepy.b64.b64decode(nonce) if nonce is not None else None,
            url=url,
            kid=kid,
        )

    @staticmethod
    def loads(envelope: typing.Union[str, bytes, acme.jws.JWS]) -> acme.jws.JWS:
        if isinstance(envelope, acme.jws.JWS):
            return envelope
        return acme.jws.JWS.json_loads(envelope)

    def verify(self, envelope: typing.Union[str, bytes, acme.jws.JWS], key: KeyMaterial) -> bool:
        """Verifies the envelope's signature with the public part of the given key.

        :param envelope: The JWS as returned by :meth:`sign` or its JSON serialization.
        :param key: The key whose public part is used for verification.
        :return: *True* if the signature is valid.
        """
        return self.loads(envelope).verify(key.jwk.public_key())
