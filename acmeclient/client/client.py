import logging
import ssl
import typing
from datetime import datetime
from pathlib import Path

from aiohttp import ClientSession, ClientTimeout
from cryptography import x509
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from acmeclient.client.account import AccountEngine
from acmeclient.client.authorization import AuthorizationEngine
from acmeclient.client.base import poll_until
from acmeclient.client.certificate import CertificateEngine
from acmeclient.client.challenge import ChallengeEngine
from acmeclient.client.challenge_solver import ChallengeSolver, DummySolver
from acmeclient.client.csr import CsrBuilder
from acmeclient.client.directory import DirectoryClient
from acmeclient.client.dispatcher import SignedRequestDispatcher
from acmeclient.client.exceptions import AcmeError, ClientError
from acmeclient.client.keys import KeyMaterial
from acmeclient.client.order import OrderEngine
from acmeclient.models import Account, Certificate, Order
from acmeclient.oplog import OperationLog
from acmeclient.plugin_base import PluginRegistry
from acmeclient.version import __version__

logger = logging.getLogger(__name__)

challenge_solver_registry = PluginRegistry.get_registry(ChallengeSolver)


class AcmeClient:
    """ACME compliant client session.

    Wires the protocol engines to one HTTP session and one
    :class:`~acmeclient.client.dispatcher.SignedRequestDispatcher`, and drives the complete
    certificate workflow in :meth:`obtain_certificate`.
    The engines are available as :attr:`accounts`, :attr:`orders`, :attr:`authorizations`,
    :attr:`challenges` and :attr:`certificates` once the client has been started.
    """

    class Config(BaseSettings, extra="forbid", env_prefix="ACMECLIENT_"):
        directory: str
        """The ACME server's directory URL."""
        contact: typing.List[str] = []
        """Contact URLs to register the account with, e.g. *mailto:admin@example.org*."""
        private_key: typing.Optional[Path] = None
        """Path of the PEM encoded RSA or EC account key."""
        server_cert: typing.Optional[Path] = None
        """Path of a CA certificate to trust in addition to the system's, for testing purposes."""
        max_retries: int = SignedRequestDispatcher.MAX_RETRIES
        retry_delay: float = SignedRequestDispatcher.RETRY_DELAY
        request_timeout: float = 30.0
        """Total timeout in seconds of a single HTTP request."""
        post_as_get: bool = True
        """Fetch resources via POST-as-GET instead of plain GET requests."""
        sha256_only: bool = False
        """Sign with SHA-256 regardless of the EC curve of the account key."""
        poll_timeout: float = 300.0
        poll_interval: float = 5.0
        challenge_attempts: int = ChallengeEngine.POLL_ATTEMPTS
        challenge_interval: float = ChallengeEngine.POLL_INTERVAL
        challenge_solver: ChallengeSolver.Config = Field(default_factory=DummySolver.Config)
        """The solver's config. Its *type* selects any solver registered with the plugin registry."""

        @field_validator("challenge_solver", mode="before")
        @classmethod
        def solver_config(cls, value):
            if isinstance(value, ChallengeSolver.Config):
                return value

            value = dict(value or {})
            solver_cls = challenge_solver_registry.get_plugin(value.setdefault("type", "dummy"))
            return solver_cls.Config.model_validate(value)

    def __init__(
        self,
        cfg: Config,
        *,
        solver: ChallengeSolver = None,
        oplog: OperationLog = None,
    ):
        """Creates an :class:`AcmeClient` instance.

        :param cfg: The client's configuration.
        :param solver: The DNS collaborator that publishes challenge records. Defaults to the solver
            configured in *cfg*.
        :param oplog: Receives the structured operation events.
        """
        self.config = cfg
        self.oplog = oplog or OperationLog()

        self._ssl_context = ssl.create_default_context()
        if cfg.server_cert:
            # Add our self-signed server cert for testing purposes.
            self._ssl_context.load_verify_locations(cafile=str(cfg.server_cert))

        self.solver = solver or challenge_solver_registry.create_plugin(cfg.challenge_solver)

        self._session: typing.Optional[ClientSession] = None
        self.directory: typing.Optional[DirectoryClient] = None
        self.dispatcher: typing.Optional[SignedRequestDispatcher] = None

    async def start(self) -> None:
        """Opens the client's session and fetches the ACME directory.

        This method must be called before any requests are made.
        """
        self._session = ClientSession(
            headers={"User-Agent": f"acmeclient {__version__}"},
            timeout=ClientTimeout(total=self.config.request_timeout),
        )
        self.directory = DirectoryClient(
            self._session, self.config.directory, ssl=self._ssl_context, oplog=self.oplog
        )
        self.dispatcher = SignedRequestDispatcher(
            self._session,
            self.directory,
            max_retries=self.config.max_retries,
            retry_delay=self.config.retry_delay,
            post_as_get=self.config.post_as_get,
            sha256_only=self.config.sha256_only,
            ssl=self._ssl_context,
            oplog=self.oplog,
        )

        self.csr = CsrBuilder()
        self.accounts = AccountEngine(self.dispatcher)
        self.orders = OrderEngine(self.dispatcher, self.csr)
        self.authorizations = AuthorizationEngine(self.dispatcher)
        self.challenges = ChallengeEngine(self.dispatcher)
        self.certificates = CertificateEngine(self.dispatcher)

        await self.directory.get_directory()

    async def close(self) -> None:
        """Closes the client's session.

        The client may not be used for requests anymore after it has been closed.
        """
        if self._session is not None:
            await self._session.close()

    async def __aenter__(self) -> "AcmeClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def account_key(self) -> typing.Optional[KeyMaterial]:
        """Loads the configured account key, if there is one."""
        if not self.config.private_key:
            return None

        return KeyMaterial.from_file(self.config.private_key, sha256_only=self.config.sha256_only)

    async def ensure_account(self) -> Account:
        """Looks up the account of the configured key and registers it if it does not exist yet.

        A new key is generated if none is configured.

        :return: The valid account.
        """
        if (key := self.account_key()) is not None:
            try:
                return await self.accounts.lookup(key)
            except AcmeError as e:
                if e.code != "accountDoesNotExist":
                    raise
                logger.info("No account exists for the configured key, registering one")

        return await self.accounts.register(self.config.contact, tos_agreed=True, key=key)

    async def obtain_certificate(
        self,
        account: Account,
        domains: typing.Sequence[str],
        csr: typing.Union[bytes, x509.CertificateSigningRequest] = None,
        not_before: datetime = None,
        not_after: datetime = None,
    ) -> Certificate:
        """Runs the complete issuance workflow for the given domains.

        The order is created, one *dns-01* challenge per authorization is completed through the
        configured solver, the order is finalized once it is ready and the certificate is downloaded.

        :param account: The valid account to order the certificate with.
        :param domains: The domains the certificate should cover.
        :param csr: The CSR to finalize with. If not given, a key and CSR are generated.
        :param not_before: The requested *notBefore* date of the certificate.
        :param not_after: The requested *notAfter* date of the certificate.
        :raises:

            * :class:`~acmeclient.client.exceptions.AcmeError` If the server rejected any request.
            * :class:`~acmeclient.client.exceptions.CouldNotCompleteChallenge` If a challenge became invalid.
            * :class:`~acmeclient.client.exceptions.PollingException` If the order did not reach the
              expected state in time.

        :return: The downloaded certificate.
        """
        order = await self.orders.create_order(account, domains, not_before, not_after)
        await self.complete_authorizations(account, order)

        await self._wait_for_order(account, order, lambda o: o.is_ready())
        if not self.orders.is_order_ready(order):
            raise ClientError(f"Order {order.url} is not ready for finalization")

        if csr is None:
            await self.orders.finalize_order_with_auto_csr(account, order)
        else:
            await self.orders.finalize_order(account, order, csr)

        await self._wait_for_order(account, order, self.orders.is_order_valid)

        return await self.certificates.download(account, order)

    async def complete_authorizations(self, account: Account, order: Order) -> None:
        """Completes the *dns-01* challenge of every authorization of the order that is not valid yet.

        Challenges that are already *processing* are not responded to again, their validation is awaited.

        :raises: :class:`~acmeclient.client.exceptions.ClientError` If the server did not offer a *dns-01*
            challenge for an authorization.
        """
        for authorization in order.authorizations:
            await self.authorizations.fetch_authorization_details(account, authorization)
            if authorization.is_valid() and authorization.has_valid_challenge():
                continue

            if (challenge := authorization.dns_challenge()) is None:
                raise ClientError(
                    f"The server offered no dns-01 challenge for {authorization.identifier.value}"
                )

            if challenge.is_processing:
                # Responded to earlier, the server is still validating.
                await self.challenges.wait_for_validation(
                    account,
                    challenge,
                    attempts=self.config.challenge_attempts,
                    interval=self.config.challenge_interval,
                )
            else:
                await self.challenges.complete_challenge(
                    account,
                    authorization,
                    challenge,
                    self.solver,
                    attempts=self.config.challenge_attempts,
                    interval=self.config.challenge_interval,
                )
            await self.authorizations.fetch_authorization_details(account, authorization)

    async def _wait_for_order(self, account: Account, order: Order, predicate) -> Order:
        return await poll_until(
            self.orders.refresh_order_status,
            account,
            order,
            predicate=predicate,
            negative_predicate=lambda o: o.is_invalid(),
            delay=self.config.poll_interval,
            max_tries=max(1, int(self.config.poll_timeout // self.config.poll_interval)),
        )
