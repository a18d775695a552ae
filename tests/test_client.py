import pytest
from cryptography import x509

from acmeclient.client import AcmeClient, DummySolver
from acmeclient.client.exceptions import ClientError, CouldNotCompleteChallenge
from acmeclient.client.keys import KeyMaterial
from acmeclient.models import CertificateStatus, OrderStatus
from acmeclient.oplog import OperationEvent


@pytest.mark.asyncio
async def test_obtain_certificate(client, account, solver, events):
    certificate = await client.obtain_certificate(account, ["example.com"])

    assert certificate.status == CertificateStatus.VALID
    assert certificate.domains == ["example.com"]
    assert certificate.private_key_pem
    assert not certificate.is_expired()

    cert = x509.load_pem_x509_certificate(certificate.certificate_pem.encode())
    key = KeyMaterial.from_pem(certificate.private_key_pem)
    assert cert.public_key() == key.private_key.public_key()

    assert len(solver.completed) == len(solver.cleaned_up) == 1
    operations = [e.operation for e in events if isinstance(e, OperationEvent)]
    for operation in (
        "account_register",
        "order_create",
        "authorization_fetch",
        "challenge_respond",
        "order_finalize",
        "certificate_download",
    ):
        assert operation in operations


@pytest.mark.asyncio
async def test_obtain_certificate_multiple_domains_with_csr(client, account, solver):
    domains = ["example.com", "*.example.com", "www.example.org"]
    key = KeyMaterial.generate_ec()
    csr = client.csr.build(domains, key)

    certificate = await client.obtain_certificate(account, domains, csr=csr)

    assert certificate.domains == domains
    assert certificate.private_key_pem is None
    assert len(solver.completed) == 3


@pytest.mark.asyncio
async def test_obtain_certificate_challenge_failure(client_config, oplog, account):
    async with AcmeClient(client_config, solver=DummySolver(), oplog=oplog) as client:
        with pytest.raises(CouldNotCompleteChallenge):
            await client.obtain_certificate(account, ["example.com"])


@pytest.mark.asyncio
async def test_complete_authorizations(client, account, solver):
    order = await client.orders.create_order(account, ["example.com", "www.example.com"])
    await client.complete_authorizations(account, order)

    assert order.all_authorizations_valid()
    assert len(solver.completed) == 2
    # The local status only changes once the order is fetched again.
    assert order.status == OrderStatus.PENDING
    await client.orders.refresh_order_status(account, order)
    assert client.orders.is_order_ready(order)

    # Valid authorizations are skipped.
    await client.complete_authorizations(account, order)
    assert len(solver.completed) == 2


@pytest.mark.asyncio
async def test_complete_authorizations_resumes_processing_challenge(client, account, solver):
    order = await client.orders.create_order(account, ["example.com"])
    authorization = order.authorizations[0]
    await client.authorizations.fetch_authorization_details(account, authorization)

    challenge = authorization.dns_challenge()
    await solver.complete_challenge(authorization.identifier, challenge)
    await client.challenges.respond_to_challenge(account, challenge)
    assert challenge.is_processing

    await client.complete_authorizations(account, order)

    assert challenge.is_valid
    assert authorization.is_valid()
    # The record was published once, before the interruption.
    assert len(solver.completed) == 1


@pytest.mark.asyncio
async def test_obtain_wildcard_certificate(client, account, solver, acme_server):
    certificate = await client.obtain_certificate(account, ["*.example.com"])

    assert certificate.domains == ["*.example.com"]
    assert [c.dns_record_name for c in solver.completed] == ["_acme-challenge.example.com"]

    authorization = next(iter(acme_server.authorizations.values()))
    assert authorization["wildcard"]
    assert authorization["identifier"]["value"] == "example.com"

    order = next(iter(acme_server.orders.values()))
    assert order["identifiers"] == [{"type": "dns", "value": "*.example.com"}]

@pytest.mark.asyncio
async def test_ensure_account(client_config, solver, tmp_path):
    key = KeyMaterial.generate_ec()
    path = tmp_path / "account.key"
    path.write_text(key.to_pem())
    client_config.private_key = path

    async with AcmeClient(client_config, solver=solver) as client:
        registered = await client.ensure_account()
        found = await client.ensure_account()

    assert registered.account_url == found.account_url
    assert registered.contacts == ["mailto:a@b.com"]
    assert KeyMaterial.from_pem(found.private_key_pem).thumbprint() == key.thumbprint()


@pytest.mark.asyncio
async def test_default_solver(client_config):
    client = AcmeClient(client_config)
    assert isinstance(client.solver, DummySolver)
    assert client.solver.config.type == "dummy"


@pytest.mark.asyncio
async def test_unreachable_directory(client_config, unused_tcp_port):
    client_config.directory = f"http://127.0.0.1:{unused_tcp_port}/directory"

    client = AcmeClient(client_config)
    with pytest.raises(ClientError):
        await client.start()
    await client.close()
