import uuid
from datetime import timedelta

import pytest
from cryptography.hazmat.primitives import serialization

from acmeclient.client.certificate import CertificateEngine, normalize_chain_body
from acmeclient.client.csr import CsrBuilder
from acmeclient.client.exceptions import ClientError
from acmeclient.client.keys import KeyMaterial
from acmeclient.models import Certificate, CertificateStatus, Order
from acmeclient.models.messages import RevocationReason
from acmeclient.util import utcnow
from .acme_server import generate_ca, generate_cert_from_csr
from .test_order import ready_order


def pem(cert) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode()


@pytest.fixture(scope="module")
def chain():
    root, root_key = generate_ca("Root")
    intermediate, intermediate_key = generate_ca("Intermediate", root, root_key)
    csr = CsrBuilder().build(["example.com", "www.example.com"], KeyMaterial.generate_ec())
    leaf = generate_cert_from_csr(csr, ["example.com", "www.example.com"], intermediate, intermediate_key)
    return leaf, intermediate, root


def test_parse_chain(chain):
    leaf, intermediate, root = chain
    order_id = uuid.uuid4()

    certificate = CertificateEngine.parse_chain("".join(pem(c) for c in chain), order_id)

    assert certificate.order_id == order_id
    assert certificate.certificate_pem == pem(leaf).strip()
    assert certificate.chain_pem == pem(intermediate).strip() + "\n" + pem(root).strip()
    assert certificate.serial_number == format(leaf.serial_number, "x")
    assert len(certificate.fingerprint) == 64
    assert certificate.issuer == "Intermediate"
    assert certificate.domains == ["example.com", "www.example.com"]
    assert certificate.not_after == leaf.not_valid_after_utc
    assert certificate.status == CertificateStatus.VALID
    assert certificate.full_chain_pem.count("BEGIN CERTIFICATE") == 3
    assert CertificateEngine.validate_certificate(certificate)


def test_parse_chain_empty():
    with pytest.raises(ClientError, match="No certificate found"):
        CertificateEngine.parse_chain("garbage", uuid.uuid4())


def test_normalize_chain_body(chain):
    blocks = [pem(c) for c in chain]

    assert normalize_chain_body("".join(blocks)) == "".join(blocks)
    assert normalize_chain_body({"certificate": "".join(blocks)}) == "".join(blocks)
    assert normalize_chain_body(blocks).count("BEGIN CERTIFICATE") == 3

    with pytest.raises(ClientError):
        normalize_chain_body({"cert": 1})


@pytest.mark.asyncio
async def test_download_and_revoke(client, account, acme_server):
    order = await ready_order(client, account, ["example.com"])
    await client.orders.finalize_order_with_auto_csr(account, order)
    await client._wait_for_order(account, order, client.orders.is_order_valid)

    certificate = await client.certificates.download(account, order)

    assert order.certificate is certificate
    assert certificate.private_key_pem == order.private_key_pem
    assert certificate.domains == ["example.com"]
    assert certificate.issuer == "Test Intermediate CA"
    assert certificate.chain_pem.count("BEGIN CERTIFICATE") == 2

    # A repeated download keeps the record's identity.
    again = await client.certificates.download(account, order)
    assert again.id == certificate.id

    await client.certificates.revoke(account, again, RevocationReason.keyCompromise)
    assert again.is_revoked
    assert again.revoked_at is not None
    assert again.revocation_reason == RevocationReason.keyCompromise.value
    assert acme_server.revoked[int(again.serial_number, 16)] == 1
    assert not CertificateEngine.validate_certificate(again)

    # Revoking again does not contact the server.
    acme_server.requests.clear()
    await client.certificates.revoke(account, again)
    assert acme_server.requests == []


@pytest.mark.asyncio
async def test_download_requires_certificate_url(client, account):
    order = await client.orders.create_order(account, ["example.com"])

    with pytest.raises(ClientError, match="not been finalized"):
        await client.certificates.download(account, order)


def make_certificate(days, status=CertificateStatus.VALID, domains=("example.com",)):
    return Certificate(
        order_id=uuid.uuid4(),
        certificate_pem="",
        status=status,
        not_after=utcnow() + timedelta(days=days),
        domains=list(domains),
    )


def test_queries():
    soon = make_certificate(5)
    later = make_certificate(60)
    expired = make_certificate(-1)
    revoked = make_certificate(10, status=CertificateStatus.REVOKED)
    other = make_certificate(20, domains=["example.org"])
    certificates = [later, soon, expired, revoked, other]

    assert CertificateEngine.find_expiring(certificates) == [soon, expired, other]
    assert CertificateEngine.find_expiring(certificates, days=3) == [expired]
    assert CertificateEngine.find_by_domain(certificates, "EXAMPLE.com") == [later, revoked, soon, expired]
    assert CertificateEngine.find_valid(certificates) == [soon, other, later]
    assert CertificateEngine.find_by_status(certificates, CertificateStatus.REVOKED) == [revoked]

    order = Order(account_id=uuid.uuid4())
    soon.order_id = order.id
    assert CertificateEngine.find_by_order(certificates, order) is soon
    assert CertificateEngine.find_by_order([], order) is None

    assert soon.is_expiring_within(7)
    assert not later.is_expiring_within(7)
    assert expired.is_expired()
    assert later.days_until_expiry() in (59, 60)
