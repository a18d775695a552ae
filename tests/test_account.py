import pytest

from acmeclient.client.exceptions import ClientError, ValidationError
from acmeclient.client.keys import KeyMaterial
from acmeclient.client.account import AccountEngine
from acmeclient.models import Account, AccountStatus


@pytest.mark.asyncio
async def test_register(client, acme_server):
    key = KeyMaterial.generate_ec()
    account = await client.accounts.register(["mailto:a@b.com"], key=key)

    assert account.status == AccountStatus.VALID
    assert account.contacts == ["mailto:a@b.com"]
    assert account.terms_of_service_agreed
    assert account.account_url.split("/")[-1] in acme_server.accounts
    assert account.server_url == client.config.directory
    assert account.public_key_jwk == key.public_jwk()
    assert KeyMaterial.from_pem(account.private_key_pem).thumbprint() == key.thumbprint()
    assert AccountEngine.is_account_valid(account)


@pytest.mark.asyncio
async def test_register_generates_key(client):
    account = await client.accounts.register(["mailto:a@b.com"])
    assert KeyMaterial.from_pem(account.private_key_pem).alg.name == "RS256"


@pytest.mark.asyncio
async def test_register_existing_key(client, account):
    again = await client.accounts.register(["mailto:a@b.com"], key=account.private_key_pem)
    assert again.account_url == account.account_url


@pytest.mark.asyncio
async def test_lookup(client, account):
    found = await client.accounts.lookup(account.private_key_pem)
    assert found.account_url == account.account_url
    assert found.status == AccountStatus.VALID


@pytest.mark.asyncio
async def test_update_and_fetch(client, account):
    await client.accounts.update(account, ["mailto:c@d.com"])
    assert account.contacts == ["mailto:c@d.com"]

    account.contacts = []
    await client.accounts.fetch(account)
    assert account.contacts == ["mailto:c@d.com"]


@pytest.mark.asyncio
async def test_deactivate(client, account):
    await client.accounts.deactivate(account)
    assert account.status == AccountStatus.DEACTIVATED
    assert not AccountEngine.is_account_valid(account)

    with pytest.raises(ClientError, match="deactivated"):
        await client.accounts.update(account, ["mailto:c@d.com"])

    # The server refuses requests signed on behalf of a deactivated account.
    account.status = AccountStatus.VALID
    with pytest.raises(ValidationError):
        await client.accounts.fetch(account)


@pytest.mark.asyncio
async def test_change_key(client, account, acme_server):
    new_key = KeyMaterial.generate_ec(384)
    await client.accounts.change_key(account, new_key)

    assert account.public_key_jwk == new_key.public_jwk()
    server_account = acme_server.accounts[account.account_url.split("/")[-1]]
    assert server_account["key"].thumbprint() == new_key.jwk.thumbprint()

    # Requests are now signed with the new key.
    await client.accounts.fetch(account)
    assert account.status == AccountStatus.VALID


@pytest.mark.asyncio
async def test_unregistered_account(client):
    account = Account(server_url=client.config.directory, private_key_pem=KeyMaterial.generate_ec().to_pem())

    with pytest.raises(ClientError, match="registered first"):
        await client.accounts.fetch(account)


def test_queries():
    a = Account(server_url="https://one", contacts=["mailto:a@b.com"], status=AccountStatus.VALID)
    b = Account(server_url="https://two", status=AccountStatus.DEACTIVATED)

    assert AccountEngine.find_by_server_url([a, b], "https://one") == [a]
    assert AccountEngine.find_by_status([a, b], AccountStatus.DEACTIVATED) == [b]
    assert AccountEngine.find_by_email([a, b], "a@b.com") is a
    assert AccountEngine.find_by_email([a, b], "x@y.com") is None
    assert not AccountEngine.is_account_valid(a)
