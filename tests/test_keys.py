import json

import josepy
import pytest
from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from acmeclient.client.exceptions import ClientError
from acmeclient.client.jws import JWSEngine, encode_payload
from acmeclient.client.keys import KeyMaterial
from acmeclient.models import messages


@pytest.fixture(scope="module")
def rsa_key():
    return KeyMaterial.generate_rsa()


@pytest.mark.parametrize(
    "key_size, alg",
    [(256, "ES256"), (384, "ES384"), (521, "ES512")],
)
def test_ec_algorithm_matches_curve(key_size, alg):
    assert KeyMaterial.generate_ec(key_size).alg.name == alg


def test_ec_sha256_only():
    key = KeyMaterial.generate_ec(384, sha256_only=True)
    assert key.alg.name == "ES256"


def test_rsa_algorithm(rsa_key):
    assert rsa_key.alg.name == "RS256"


def test_unsupported_key_type():
    with pytest.raises(ClientError):
        KeyMaterial(ed25519.Ed25519PrivateKey.generate())


def test_unsupported_curve():
    with pytest.raises(ClientError, match="Unsupported elliptic curve"):
        KeyMaterial(ec.generate_private_key(ec.SECP256K1()))


def test_from_pem_roundtrip(rsa_key):
    loaded = KeyMaterial.from_pem(rsa_key.to_pem())
    assert loaded.thumbprint() == rsa_key.thumbprint()


def test_from_pem_garbage():
    with pytest.raises(ClientError, match="Could not load private key"):
        KeyMaterial.from_pem("not a key")


def test_thumbprint(rsa_key):
    thumbprint = rsa_key.thumbprint()

    assert thumbprint == rsa_key.thumbprint()
    assert "=" not in thumbprint
    # base64url encoded SHA-256 digest
    assert len(josepy.b64.b64decode(thumbprint)) == 32


def test_public_jwk(rsa_key):
    jwk = rsa_key.public_jwk()
    assert jwk["kty"] == "RSA"
    assert "d" not in jwk


@pytest.mark.parametrize(
    "generate", [KeyMaterial.generate_rsa, KeyMaterial.generate_ec], ids=["rsa", "ec"]
)
def test_sign_verify(generate):
    key = generate()
    engine = JWSEngine()
    jws = engine.sign({"termsOfServiceAgreed": True}, "https://acme.test/new-account", "AAAA", key)

    assert set(json.loads(jws.json_dumps())) == {"protected", "payload", "signature"}
    assert engine.verify(jws, key)
    assert engine.verify(jws.json_dumps(), key)

    assert not engine.verify(jws, generate())


def test_protected_header_with_jwk(rsa_key):
    nonce = josepy.b64.b64encode(b"nonce-1").decode()
    jws = JWSEngine().sign(None, "https://acme.test/x", nonce, rsa_key)
    header = jws.signature.combined

    assert header.alg.name == "RS256"
    assert header.jwk.thumbprint() == rsa_key.jwk.thumbprint()
    assert header.kid is None
    assert header.nonce == b"nonce-1"
    assert header.url == "https://acme.test/x"
    assert jws.payload == b""

    protected = json.loads(josepy.b64.b64decode(json.loads(jws.json_dumps())["protected"]))
    assert protected["nonce"] == nonce
    assert protected["jwk"] == rsa_key.public_jwk()


def test_protected_header_with_kid(rsa_key):
    jws = JWSEngine().sign({}, "https://acme.test/x", "AAAA", rsa_key, kid="https://acme.test/acct/1")
    header = jws.signature.combined

    assert header.kid == "https://acme.test/acct/1"
    assert header.jwk is None
    assert jws.payload == b"{}"


def test_inner_jws_without_nonce(rsa_key):
    jws = JWSEngine().sign({}, "https://acme.test/key-change", None, rsa_key)
    protected = json.loads(josepy.b64.b64decode(json.loads(jws.json_dumps())["protected"]))

    assert jws.signature.combined.nonce is None
    assert "nonce" not in protected


def test_encode_payload():
    assert encode_payload(None) == b""
    assert encode_payload(b"raw") == b"raw"
    assert encode_payload({"a": 1, "b": [1, 2]}) == b'{"a":1,"b":[1,2]}'

    encoded = json.loads(encode_payload(messages.NewAccount(only_return_existing=True)))
    assert encoded == {"onlyReturnExisting": True}


def test_key_sign_verify(rsa_key):
    signature = rsa_key.sign(b"message")

    assert rsa_key.verify(b"message", signature)
    assert not rsa_key.verify(b"other message", signature)
