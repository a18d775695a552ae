import logging
import typing

from acmeclient.client.base import Engine
from acmeclient.client.exceptions import ClientError
from acmeclient.client.keys import KeyMaterial
from acmeclient.models import Account, AccountStatus
from acmeclient.models import messages

logger = logging.getLogger(__name__)


class AccountEngine(Engine):
    """Registers and manages ACME accounts.

    See `7.3. Account Management <https://tools.ietf.org/html/rfc8555#section-7.3>`_.
    """

    RSA_KEY_SIZE = 2048
    """Size of the RSA key that is generated if none is supplied on registration."""

    async def register(
        self,
        contacts: typing.Iterable[str],
        tos_agreed: bool = True,
        key: typing.Union[KeyMaterial, str, None] = None,
    ) -> Account:
        """Registers a new account with the server.

        :param contacts: The contact URLs, e.g. *mailto:admin@example.org*.
        :param tos_agreed: Whether the terms of service are agreed to.
        :param key: The account key, either as :class:`~acmeclient.client.keys.KeyMaterial` or PEM. A new
            RSA key is generated if none is given.
        :raises: :class:`~acmeclient.client.exceptions.AcmeError` If the server rejected the registration.
        :return: The registered account.
        """
        key = self._coerce_key(key)
        contacts = list(contacts)

        async with self._operation(
            "account_register",
            "Registered account",
            "Account registration failed",
            entity_type="account",
            contacts=contacts,
        ) as context:
            reg = messages.NewAccount(contact=contacts, terms_of_service_agreed=tos_agreed)
            resp, account_obj = await self.dispatcher.signed_request("newAccount", reg, key)

            account = self._account_from_response(resp, account_obj, key)
            account.terms_of_service_agreed = tos_agreed
            if not isinstance(account_obj, dict) or "contact" not in account_obj:
                account.contacts = contacts
            context["account_url"] = account.account_url

        return account

    async def lookup(self, key: typing.Union[KeyMaterial, str]) -> Account:
        """Looks up the existing account that belongs to the given key.

        :param key: The account key.
        :raises: :class:`~acmeclient.client.exceptions.AcmeError` If no account exists for the key.
        :return: The account.
        """
        key = self._coerce_key(key)

        async with self._operation(
            "account_lookup", "Looked up account", "Account lookup failed", entity_type="account"
        ) as context:
            reg = messages.NewAccount(only_return_existing=True)
            resp, account_obj = await self.dispatcher.signed_request("newAccount", reg, key)

            account = self._account_from_response(resp, account_obj, key)
            context["account_url"] = account.account_url

        return account

    async def fetch(self, account: Account) -> Account:
        """Refreshes the account's status and contacts from the server."""
        key, kid = self._credentials(account)

        async with self._operation(
            "account_fetch",
            "Fetched account",
            "Fetching account failed",
            entity_type="account",
            entity_id=account.id,
        ):
            account_obj = await self.dispatcher.post(kid, {}, key, kid)
            account.update(account_obj)

        return account

    async def update(self, account: Account, contacts: typing.Iterable[str]) -> Account:
        """Replaces the account's contact information.

        :raises: :class:`~acmeclient.client.exceptions.ClientError` If the account is missing its key or URL,
            or has been deactivated.
        """
        key, kid = self._credentials(account)
        self._check_not_deactivated(account)
        contacts = list(contacts)

        async with self._operation(
            "account_update",
            "Updated account",
            "Account update failed",
            entity_type="account",
            entity_id=account.id,
            contacts=contacts,
        ):
            account_obj = await self.dispatcher.post(
                kid, messages.AccountUpdate(contact=contacts), key, kid
            )
            account.contacts = contacts
            account.update(account_obj)

        return account

    async def deactivate(self, account: Account) -> Account:
        """Deactivates the account. Deactivation cannot be undone.

        :raises: :class:`~acmeclient.client.exceptions.ClientError` If the account is missing its key or URL,
            or has already been deactivated.
        """
        key, kid = self._credentials(account)
        self._check_not_deactivated(account)

        async with self._operation(
            "account_deactivate",
            "Deactivated account",
            "Account deactivation failed",
            entity_type="account",
            entity_id=account.id,
        ):
            account_obj = await self.dispatcher.post(
                kid, messages.AccountUpdate(status=AccountStatus.DEACTIVATED), key, kid
            )
            account.status = AccountStatus.DEACTIVATED
            account.update(account_obj)

        return account

    async def change_key(self, account: Account, new_key: typing.Union[KeyMaterial, str]) -> Account:
        """Replaces the account's key.

        The challenges of pending authorizations have to be prepared again afterwards, as their key
        authorizations depend on the account key.

        See `7.3.5. Account Key Rollover <https://tools.ietf.org/html/rfc8555#section-7.3.5>`_.
        """
        key, kid = self._credentials(account)
        self._check_not_deactivated(account)
        new_key = self._coerce_key(new_key)

        async with self._operation(
            "account_key_change",
            "Changed account key",
            "Account key change failed",
            entity_type="account",
            entity_id=account.id,
        ):
            url = await self.dispatcher.directory.url_for("keyChange")
            key_change = messages.KeyChange(account=kid, old_key=key.public_jwk())
            # The inner JWS is signed by the new key and carries no nonce.
            inner = self.dispatcher.jws.sign(key_change, url, None, new_key)
            await self.dispatcher.post(url, inner, key, kid)

            account.private_key_pem = new_key.to_pem()
            account.public_key_jwk = new_key.public_jwk()

        return account

    @staticmethod
    def find_by_server_url(accounts: typing.Iterable[Account], server_url: str) -> typing.List[Account]:
        return [account for account in accounts if account.server_url == server_url]

    @staticmethod
    def find_by_status(accounts: typing.Iterable[Account], status: AccountStatus) -> typing.List[Account]:
        return [account for account in accounts if account.status == status]

    @staticmethod
    def find_by_email(accounts: typing.Iterable[Account], email: str) -> typing.Optional[Account]:
        contact = f"mailto:{email}"
        return next((account for account in accounts if contact in account.contacts), None)

    @staticmethod
    def is_account_valid(account: Account) -> bool:
        """Whether the account is registered, valid and usable for signing."""
        return (
            account.status == AccountStatus.VALID
            and bool(account.account_url)
            and bool(account.private_key_pem)
        )

    def _coerce_key(self, key) -> KeyMaterial:
        if key is None:
            logger.debug("Generating %d bit RSA account key", self.RSA_KEY_SIZE)
            return KeyMaterial.generate_rsa(self.RSA_KEY_SIZE)
        if isinstance(key, KeyMaterial):
            return key
        return KeyMaterial.from_pem(key, sha256_only=self.dispatcher.sha256_only)

    def _account_from_response(self, resp, account_obj, key: KeyMaterial) -> Account:
        if not (location := resp.headers.get("Location")):
            raise ClientError("The server did not return an account URL")

        account = Account(
            server_url=self.dispatcher.directory.directory_url,
            private_key_pem=key.to_pem(),
            public_key_jwk=key.public_jwk(),
            account_url=location,
            status=AccountStatus.VALID,
        )
        if isinstance(account_obj, dict):
            account.update(account_obj)

        return account

    @staticmethod
    def _check_not_deactivated(account: Account) -> None:
        if account.is_deactivated:
            raise ClientError("The account has been deactivated")
