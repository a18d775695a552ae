import asyncio
import contextlib
import logging
import typing
from datetime import datetime

import josepy

from acmeclient.client.dispatcher import SignedRequestDispatcher
from acmeclient.client.exceptions import AcmeError, ClientError, PollingException
from acmeclient.client.keys import KeyMaterial
from acmeclient.models import Account
from acmeclient.models.messages import RFC3339Field

logger = logging.getLogger(__name__)


def decode_timestamp(value: typing.Optional[str]) -> typing.Optional[datetime]:
    """Decodes an RFC 3339 timestamp of a server object, such as an order's *expires* field.

    :raises: :class:`~acmeclient.client.exceptions.ClientError` If the timestamp is malformed.
    :return: A timezone aware datetime or *None* if no value was given.
    """
    if not value:
        return None

    try:
        return RFC3339Field.default_decoder(value)
    except josepy.errors.DeserializationError as e:
        raise ClientError(f"Malformed timestamp {value!r}: {e}") from e


class Engine:
    """Base class of the protocol engines.

    All engines of a client session share one :class:`~acmeclient.client.dispatcher.SignedRequestDispatcher`.
    """

    def __init__(self, dispatcher: SignedRequestDispatcher):
        self.dispatcher = dispatcher
        self.oplog = dispatcher.oplog

    @contextlib.asynccontextmanager
    async def _operation(
        self,
        operation: str,
        message: str,
        failure: str,
        *,
        entity_type: str = None,
        entity_id: typing.Any = None,
        **context,
    ):
        """Reports the enclosed block as a lifecycle operation.

        ACME errors raised inside the block are re-raised with *failure* as context.
        """
        async with self.oplog.measure(
            operation, message, entity_type=entity_type, entity_id=entity_id, **context
        ) as ctx:
            try:
                yield ctx
            except AcmeError as e:
                raise e.with_context(failure) from e

    def _key_of(self, account: Account) -> KeyMaterial:
        if not account.private_key_pem:
            raise ClientError("The account has no private key")

        return KeyMaterial.from_pem(
            account.private_key_pem, sha256_only=self.dispatcher.sha256_only
        )

    def _credentials(self, account: Account) -> typing.Tuple[KeyMaterial, str]:
        """Returns the key and *kid* to sign requests on behalf of the given account.

        :raises: :class:`~acmeclient.client.exceptions.ClientError` If the account has no private key or
            has not been registered yet.
        """
        key = self._key_of(account)
        if not account.account_url:
            raise ClientError("The account has no account URL, it has to be registered first")

        return key, account.account_url

    async def _fetch(self, account: Account, url: str):
        key, kid = self._credentials(account)
        return await self.dispatcher.fetch(url, key, kid)


async def poll_until(
    coro,
    *args,
    predicate=None,
    negative_predicate=None,
    delay=5.0,
    max_tries=10,
    **kwargs,
):
    """Calls the coroutine function until its result satisfies the predicate.

    :param coro: The coroutine function to poll.
    :param predicate: Stops polling successfully once it returns *True* for a result.
    :param negative_predicate: Stops polling unsuccessfully once it returns *True* for a result.
    :param delay: Seconds to sleep between tries.
    :param max_tries: Number of tries after the initial call.
    :raises: :class:`~acmeclient.client.exceptions.PollingException` If the negative predicate became *True*
        or the tries ran out.
    :return: The last result.
    """
    tries = max_tries
    result = await coro(*args, **kwargs)
    while tries > 0:
        logger.debug("Polling %s, tries remaining: %d", coro.__name__, tries - 1)
        if predicate(result):
            break

        if negative_predicate and negative_predicate(result):
            raise PollingException(
                result,
                f"Polling unsuccessful: {coro.__name__}, {negative_predicate.__name__} became True",
            )

        await asyncio.sleep(delay)
        result = await coro(*args, **kwargs)
        tries -= 1
    else:
        if not predicate(result):
            raise PollingException(result, f"Polling unsuccessful: {coro.__name__}")

    return result
