import logging
import typing
from datetime import datetime

from cryptography import x509

from acmeclient.client.base import Engine, decode_timestamp
from acmeclient.client.csr import CsrBuilder
from acmeclient.client.dispatcher import SignedRequestDispatcher
from acmeclient.client.exceptions import ClientError
from acmeclient.client.keys import KeyMaterial
from acmeclient.models import (
    Account,
    AccountStatus,
    Authorization,
    Identifier,
    Order,
    OrderStatus,
)
from acmeclient.models import messages

logger = logging.getLogger(__name__)

FINALIZED_STATES = frozenset([OrderStatus.PROCESSING, OrderStatus.VALID])
"""Order states in which a finalization request has already been accepted by the server."""


def apply_order_object(order: Order, order_obj: dict) -> Order:
    """Overwrites the order's server-controlled fields with those of the server's order object.

    :param order: The local order.
    :param order_obj: The order object as returned by the server.
    :return: The updated order.
    """
    if not isinstance(order_obj, dict):
        raise ClientError("The server returned a malformed order object")

    if status := order_obj.get("status"):
        order.status = OrderStatus(status)
    if "expires" in order_obj:
        order.expires = decode_timestamp(order_obj["expires"])
    if finalize := order_obj.get("finalize"):
        order.finalize_url = finalize
    if certificate := order_obj.get("certificate"):
        order.certificate_url = certificate
    order.error = order_obj.get("error")

    return order


class OrderCreation(Engine):
    async def create(
        self,
        account: Account,
        domains: typing.Sequence[str],
        not_before: datetime = None,
        not_after: datetime = None,
    ) -> Order:
        if account.status != AccountStatus.VALID or account.is_deactivated:
            raise ClientError(f"Cannot create an order for an account in state {account.status.value}")
        if not domains:
            raise ClientError("At least one domain is required to create an order")

        key, kid = self._credentials(account)
        domains = list(domains)

        async with self._operation(
            "order_create",
            "Created order",
            "Order creation failed",
            entity_type="order",
            domains=domains,
        ) as context:
            order = Order(account_id=account.id, not_before=not_before, not_after=not_after)
            order.identifiers = [Identifier(order_id=order.id, value=domain) for domain in domains]

            new_order = messages.NewOrder.from_data(
                identifiers=[identifier.serialize() for identifier in order.identifiers],
                not_before=not_before,
                not_after=not_after,
            )
            resp, order_obj = await self.dispatcher.signed_request("newOrder", new_order, key, kid)

            if not (location := resp.headers.get("Location")):
                raise ClientError("The server did not return an order URL")

            order.url = location
            apply_order_object(order, order_obj)

            authorization_urls = order_obj.get("authorizations", [])
            if len(authorization_urls) != len(order.identifiers):
                logger.warning(
                    "Order %s has %d identifiers but %d authorizations",
                    location,
                    len(order.identifiers),
                    len(authorization_urls),
                )

            # Authorizations are paired with the requested identifiers by position.
            order.authorizations = [
                Authorization(
                    order_id=order.id,
                    url=url,
                    identifier=identifier,
                    wildcard=identifier.is_wildcard,
                )
                for identifier, url in zip(order.identifiers, authorization_urls)
            ]
            context["order_url"] = location

        return order


class OrderStatusTracker(Engine):
    async def refresh(self, account: Account, order: Order) -> Order:
        if not order.url:
            raise ClientError("The order has no URL")

        async with self._operation(
            "order_refresh",
            "Refreshed order status",
            "Order status refresh failed",
            entity_type="order",
            entity_id=order.id,
            order_url=order.url,
        ) as context:
            apply_order_object(order, await self._fetch(account, order.url))
            context["status"] = order.status.value

        return order


class OrderValidation:
    @staticmethod
    def is_order_ready(order: Order) -> bool:
        """Checks whether the order can be finalized.

        Besides the order's status being *ready*, every authorization has to be valid and have at least one
        valid challenge, the finalize URL has to be known and the order must not have expired.
        """
        return (
            order.status == OrderStatus.READY
            and order.all_authorizations_valid()
            and all(authorization.has_valid_challenge() for authorization in order.authorizations)
            and bool(order.finalize_url)
            and not order.is_expired()
        )

    @staticmethod
    def is_ready_for_finalization(order: Order) -> bool:
        return order.status == OrderStatus.READY

    @staticmethod
    def is_order_valid(order: Order) -> bool:
        return order.status == OrderStatus.VALID


class OrderFinalization(Engine):
    RSA_KEY_SIZE = 2048

    def __init__(self, dispatcher: SignedRequestDispatcher, csr_builder: CsrBuilder = None):
        super().__init__(dispatcher)
        self.csr_builder = csr_builder or CsrBuilder()

    async def finalize(
        self,
        account: Account,
        order: Order,
        csr: typing.Union[bytes, x509.CertificateSigningRequest],
    ) -> Order:
        if order.status in FINALIZED_STATES:
            logger.info(
                "Order %s has already been finalized (status %s), skipping", order.url, order.status.value
            )
            return order
        if not order.finalize_url:
            raise ClientError("The order has no finalize URL")

        key, kid = self._credentials(account)
        if isinstance(csr, x509.CertificateSigningRequest):
            csr = CsrBuilder.to_der(csr)

        async with self._operation(
            "order_finalize",
            "Finalized order",
            "Order finalization failed",
            entity_type="order",
            entity_id=order.id,
            order_url=order.url,
        ) as context:
            order_obj = await self.dispatcher.post(
                order.finalize_url, messages.CertificateRequest(csr=csr), key, kid
            )
            apply_order_object(order, order_obj)
            context["status"] = order.status.value

        return order

    async def finalize_with_auto_csr(self, account: Account, order: Order) -> Order:
        if order.status in FINALIZED_STATES:
            logger.info("Order %s has already been finalized, skipping CSR generation", order.url)
            return order

        key = KeyMaterial.generate_rsa(self.RSA_KEY_SIZE)
        csr = self.csr_builder.build(order.domains, key)
        order.private_key_pem = key.to_pem()

        return await self.finalize(account, order, csr)


class OrderQuery:
    @staticmethod
    def find_by_account(orders: typing.Iterable[Order], account: Account) -> typing.List[Order]:
        return [order for order in orders if order.account_id == account.id]

    @staticmethod
    def find_by_status(orders: typing.Iterable[Order], status: OrderStatus) -> typing.List[Order]:
        return [order for order in orders if order.status == status]

    @staticmethod
    def authorizations_of(order: Order) -> typing.List[Authorization]:
        return list(order.authorizations)


class OrderEngine:
    """Creates, tracks and finalizes certificate orders.

    The order's state machine (*pending*, *ready*, *processing*, *valid*, *invalid*) is driven exclusively
    by the server: the local status only changes when a server response is applied.
    Every operation that talks to the server takes the owning account explicitly, since orders only
    refer to their account by id.

    See `7.4. Applying for Certificate Issuance <https://tools.ietf.org/html/rfc8555#section-7.4>`_.
    """

    def __init__(self, dispatcher: SignedRequestDispatcher, csr_builder: CsrBuilder = None):
        self.creation = OrderCreation(dispatcher)
        self.tracker = OrderStatusTracker(dispatcher)
        self.finalization = OrderFinalization(dispatcher, csr_builder)
        self.validation = OrderValidation()
        self.query = OrderQuery()

    async def create_order(
        self,
        account: Account,
        domains: typing.Sequence[str],
        not_before: datetime = None,
        not_after: datetime = None,
    ) -> Order:
        """Creates a new order for the given domains.

        One authorization per authorization URL returned by the server is created, paired by position
        with the requested identifiers.

        :param account: The ordering account, which must be valid.
        :param domains: The domains to order a certificate for. Wildcards are given as *\\*.example.org*.
        :param not_before: The requested *notBefore* date of the certificate.
        :param not_after: The requested *notAfter* date of the certificate.
        :raises:

            * :class:`~acmeclient.client.exceptions.ClientError` If the account is not valid or no domains
              were given.
            * :class:`~acmeclient.client.exceptions.AcmeError` If the server rejected the order.

        :return: The new order.
        """
        return await self.creation.create(account, domains, not_before, not_after)

    async def refresh_order_status(self, account: Account, order: Order) -> Order:
        """Fetches the order and overwrites its status, expiry and certificate URL.

        This is the only way to advance an order's status.
        """
        return await self.tracker.refresh(account, order)

    def is_order_ready(self, order: Order) -> bool:
        return self.validation.is_order_ready(order)

    def is_ready_for_finalization(self, order: Order) -> bool:
        return self.validation.is_ready_for_finalization(order)

    def is_order_valid(self, order: Order) -> bool:
        return self.validation.is_order_valid(order)

    async def finalize_order(
        self,
        account: Account,
        order: Order,
        csr: typing.Union[bytes, x509.CertificateSigningRequest],
    ) -> Order:
        """Submits the CSR to the order's finalize URL.

        Finalizing an order that is already *processing* or *valid* does not contact the server and
        returns the order unchanged.

        :param account: The account that owns the order.
        :param order: The order to finalize.
        :param csr: The DER encoded CSR or a :class:`cryptography.x509.CertificateSigningRequest`.
        :raises:

            * :class:`~acmeclient.client.exceptions.ClientError` If the order has no finalize URL.
            * :class:`~acmeclient.client.exceptions.AcmeError` If the server rejected the CSR.

        :return: The updated order.
        """
        return await self.finalization.finalize(account, order, csr)

    async def finalize_order_with_auto_csr(self, account: Account, order: Order) -> Order:
        """Finalizes the order with a CSR for a freshly generated 2048 bit RSA key.

        The CSR's common name is the order's first domain and its SAN extension lists all domains.
        The generated key is stored in :attr:`~acmeclient.models.Order.private_key_pem`.
        """
        return await self.finalization.finalize_with_auto_csr(account, order)

    def find_by_account(self, orders: typing.Iterable[Order], account: Account) -> typing.List[Order]:
        return self.query.find_by_account(orders, account)

    def find_by_status(self, orders: typing.Iterable[Order], status: OrderStatus) -> typing.List[Order]:
        return self.query.find_by_status(orders, status)

    def authorizations_of(self, order: Order) -> typing.List[Authorization]:
        return self.query.authorizations_of(order)
