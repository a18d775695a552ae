import asyncio
import logging
import typing

from aiohttp import ClientSession, ClientResponse, ClientError as AiohttpClientError

from acmeclient.client.directory import DirectoryClient, read_body, error_from_response
from acmeclient.client.exceptions import AcmeError, ClientError, RateLimitError
from acmeclient.client.jws import JWSEngine, Payload
from acmeclient.client.keys import KeyMaterial
from acmeclient.oplog import OperationLog
from acmeclient.util import PerformanceMeasure

logger = logging.getLogger(__name__)


class SignedRequestDispatcher:
    """Sends JWS signed requests to the ACME server.

    Failed requests are retried as long as fewer than :attr:`max_retries` attempts have been made and
    the error is either

    * a rate limit error, in which case the dispatcher sleeps :attr:`retry_delay` seconds first, or
    * a *badNonce* error, in which case the cached nonce is discarded and the request is retried immediately.

    Every other error is raised right away.
    All engines of one client session share a single dispatcher and thereby a single nonce stream.

    :param session: The HTTP session to issue requests with.
    :param directory: The directory client that provides URLs and nonces.
    :param max_retries: Maximum number of attempts per request.
    :param retry_delay: Seconds to wait before retrying a rate limited request.
    :param post_as_get: Whether resources are fetched via POST-as-GET rather than a plain GET.
    :param sha256_only: Sign with SHA-256 regardless of the EC curve.
    """

    MAX_RETRIES = 3
    RETRY_DELAY = 1.0

    def __init__(
        self,
        session: ClientSession,
        directory: DirectoryClient,
        *,
        jws: JWSEngine = None,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        post_as_get: bool = True,
        sha256_only: bool = False,
        ssl=True,
        oplog: OperationLog = None,
    ):
        self._session = session
        self.directory = directory
        self.jws = jws or JWSEngine()
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.post_as_get_enabled = post_as_get
        self.sha256_only = sha256_only
        self._ssl = ssl
        self.oplog = oplog or OperationLog()

    async def post(
        self, endpoint: str, payload: Payload, key: KeyMaterial, kid: str = None
    ) -> typing.Union[dict, list, str]:
        """Sends a signed POST request.

        :param endpoint: Directory key such as *newOrder* or a resource URL.
        :param payload: The request payload, *None* for POST-as-GET.
        :param key: The key to sign the request with.
        :param kid: The account URL. If not given, the public key is embedded instead.
        :raises: :class:`~acmeclient.client.exceptions.AcmeError` If the request ultimately failed.
        :return: The decoded response body.
        """
        _, data = await self.signed_request(endpoint, payload, key, kid)
        return data

    async def post_as_get(
        self, url: str, key: KeyMaterial, kid: str
    ) -> typing.Union[dict, list, str]:
        _, data = await self.signed_request(url, None, key, kid)
        return data

    async def fetch(
        self, url: str, key: KeyMaterial = None, kid: str = None
    ) -> typing.Union[dict, list, str]:
        """Fetches a resource, via POST-as-GET if enabled and a key is given, otherwise via a plain GET."""
        if self.post_as_get_enabled and key is not None:
            return await self.post_as_get(url, key, kid)

        return await self.get(url)

    async def signed_request(
        self, endpoint: str, payload: Payload, key: KeyMaterial, kid: str = None
    ) -> typing.Tuple[ClientResponse, typing.Union[dict, list, str]]:
        """Sends a signed POST request applying the retry policy.

        :return: The response and its decoded body.
        """
        if not isinstance(key, KeyMaterial):
            raise ClientError("A private key is required to sign requests")

        url = await self.directory.url_for(endpoint)

        attempt = 0
        while True:
            attempt += 1
            envelope = self.jws.sign(
                payload, url, await self.directory.get_nonce(), key, kid=kid
            )

            try:
                return await self._request(
                    "POST",
                    url,
                    attempt,
                    data=envelope.json_dumps(indent=2),
                    headers={"Content-Type": "application/jose+json"},
                )
            except RateLimitError:
                if attempt >= self.max_retries:
                    raise
                logger.info(
                    "Rate limited on %s, retrying in %.2f s (attempt %d/%d)",
                    url,
                    self.retry_delay,
                    attempt,
                    self.max_retries,
                )
                await asyncio.sleep(self.retry_delay)
            except AcmeError as e:
                if e.code != "badNonce" or attempt >= self.max_retries:
                    raise
                logger.debug(
                    "Bad nonce on %s, retrying (attempt %d/%d)",
                    url,
                    attempt,
                    self.max_retries,
                )
                self.directory.discard_nonce()

    async def get(self, url: str) -> typing.Union[dict, list, str]:
        """Sends a plain, unauthenticated GET request.

        :raises: :class:`~acmeclient.client.exceptions.AcmeError` If the request failed.
        :return: The decoded response body.
        """
        _, data = await self._request("GET", url, 1)
        return data

    async def _request(self, method: str, url: str, attempt: int, **kwargs):
        measure = PerformanceMeasure()
        status = None

        try:
            async with measure:
                async with self._session.request(method, url, ssl=self._ssl, **kwargs) as resp:
                    status = resp.status
                    self.directory.store_nonce(resp)

                    try:
                        data = await read_body(resp)
                    except ValueError as e:
                        if resp.status < 400:
                            raise ClientError(f"Invalid JSON in response from {url}: {e}") from e
                        data = {}

                    if resp.status >= 400:
                        raise error_from_response(resp, data)
        except (AiohttpClientError, asyncio.TimeoutError) as e:
            error = ClientError(f"{method} {url} failed: {e}")
            self._report_failure(error, method, url, status, attempt, measure)
            raise error from e
        except AcmeError as e:
            self._report_failure(e, method, url, status, attempt, measure)
            raise

        self.oplog.operation(
            "acme_request" if method == "POST" else "acme_get",
            f"{method} {url}",
            duration_ms=measure.duration_ms,
            url=url,
            method=method,
            status=status,
            attempt=attempt,
        )
        logger.debug(data)
        return resp, data

    def _report_failure(self, error, method, url, status, attempt, measure) -> None:
        self.oplog.exception(
            error,
            operation="acme_request" if method == "POST" else "acme_get",
            http_url=url,
            http_method=method,
            http_status_code=status,
            level=logging.WARNING,
            attempt=attempt,
            duration_ms=measure.duration_ms,
        )
