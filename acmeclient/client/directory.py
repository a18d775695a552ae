import asyncio
import json
import logging
import typing

import acme.messages
import josepy
import yarl
from aiohttp import ClientSession, ClientResponse, ClientError as AiohttpClientError

from acmeclient.client.exceptions import AcmeError, ClientError, RateLimitError, error_for_status
from acmeclient.oplog import OperationLog

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPES = frozenset(["application/json", "application/problem+json"])


async def read_body(resp: ClientResponse) -> typing.Union[dict, list, str]:
    """Decodes a response body.

    JSON documents are decoded, other content types such as *application/pem-certificate-chain*
    are returned as text and an empty body results in an empty :class:`dict`.

    :param resp: The response to decode.
    :raises: :class:`ValueError` If the response claims to be JSON but cannot be decoded.
    """
    text = await resp.text()
    if not text:
        return {}

    if resp.content_type in JSON_CONTENT_TYPES:
        return json.loads(text)

    return text


def _retry_after(resp: ClientResponse) -> typing.Optional[float]:
    try:
        return float(resp.headers["Retry-After"])
    except (KeyError, ValueError):
        return None


def error_from_response(resp: ClientResponse, body) -> AcmeError:
    """Translates an error response into the matching :class:`~acmeclient.client.exceptions.AcmeError`.

    The body is parsed as an `RFC 7807 <https://tools.ietf.org/html/rfc7807>`_ problem document.
    A missing type or detail is reported as *unknown* and *Unknown error*.

    :param resp: The error response.
    :param body: The decoded response body.
    :return: The error, ready to be raised.
    """
    problem = body if isinstance(body, dict) else {}

    try:
        parsed = acme.messages.Error.from_json(problem) if problem.get("type") else None
    except josepy.errors.DeserializationError:
        parsed = None

    error_type = parsed.typ if parsed else "unknown"
    detail = (parsed.detail if parsed else None) or problem.get("detail") or "Unknown error"

    kwargs = dict(error_type=error_type, detail=detail, status=resp.status, raw=body)
    error_cls = error_for_status(resp.status)
    if error_cls is RateLimitError:
        kwargs["retry_after"] = _retry_after(resp)

    return error_cls(f"{detail} ({error_type})", **kwargs)


class DirectoryClient:
    """Fetches the ACME directory and manages the session's replay nonce.

    The directory is fetched lazily on first use and kept for the lifetime of the instance.
    A single nonce is cached: every response carrying a *Replay-Nonce* header replaces it and
    :meth:`get_nonce` hands it out exactly once.

    :param session: The HTTP session to issue requests with.
    :param directory_url: The URL of the ACME server's directory.
    :param ssl: The SSL context or flag passed on to :mod:`aiohttp`.
    :param oplog: Receives the structured operation events.
    """

    def __init__(
        self,
        session: ClientSession,
        directory_url: str,
        *,
        ssl=True,
        oplog: OperationLog = None,
    ):
        self._session = session
        self.directory_url = directory_url
        self._ssl = ssl
        self._oplog = oplog or OperationLog()

        self._directory: typing.Optional[dict] = None
        self._nonce: typing.Optional[str] = None

    async def get_directory(self) -> dict:
        """Returns the directory, fetching it with a plain GET on first use.

        Fetch failures are not retried.

        :raises: :class:`~acmeclient.client.exceptions.AcmeError` If the directory could not be fetched.
        :return: Mapping of endpoint names such as *newAccount* to URLs.
        """
        if self._directory is not None:
            return self._directory

        async with self._oplog.measure(
            "directory_fetch", "Fetched ACME directory", url=self.directory_url, method="GET"
        ) as context:
            try:
                async with self._session.get(self.directory_url, ssl=self._ssl) as resp:
                    context["status"] = resp.status
                    try:
                        body = await read_body(resp)
                    except ValueError as e:
                        raise ClientError(f"Directory is not valid JSON: {e}") from e

                    if resp.status >= 400:
                        raise error_from_response(resp, body).with_context(
                            "Failed to fetch ACME directory"
                        )
            except (AiohttpClientError, asyncio.TimeoutError) as e:
                raise ClientError(f"Failed to fetch ACME directory: {e}") from e

            if not isinstance(body, dict):
                raise ClientError("The ACME directory is not a JSON object")

        self._directory = body
        return self._directory

    def invalidate(self) -> None:
        """Drops the cached directory so that it is fetched again on next use."""
        self._directory = None

    async def url_for(self, endpoint: str) -> str:
        """Resolves a directory endpoint name to its URL.

        Absolute HTTP(S) URLs are passed through unchanged.

        :param endpoint: Directory key such as *newOrder*, or a URL.
        :raises: :class:`~acmeclient.client.exceptions.ClientError` If the endpoint is neither.
        """
        directory = await self.get_directory()
        if url := directory.get(endpoint):
            return url

        url = yarl.URL(endpoint)
        if url.is_absolute() and url.scheme in ("http", "https"):
            return endpoint

        raise ClientError(f"Unknown endpoint or invalid URL: {endpoint}")

    async def get_nonce(self) -> str:
        """Returns a fresh nonce.

        The cached nonce is handed out if there is one, otherwise a new one is requested from the
        directory's *newNonce* endpoint.

        :raises: :class:`~acmeclient.client.exceptions.ClientError` If the server did not supply a nonce.
        """
        if self._nonce is not None:
            nonce, self._nonce = self._nonce, None
            return nonce

        url = await self.url_for("newNonce")
        async with self._oplog.measure(
            "nonce_fetch", "Fetched new nonce", url=url, method="HEAD"
        ) as context:
            try:
                async with self._session.head(url, ssl=self._ssl) as resp:
                    context["status"] = resp.status
                    nonce = resp.headers.get("Replay-Nonce")
            except (AiohttpClientError, asyncio.TimeoutError) as e:
                raise ClientError(f"Failed to fetch nonce: {e}") from e

            if not nonce:
                raise ClientError("No nonce received from server")

        return nonce

    def store_nonce(self, resp: ClientResponse) -> None:
        """Caches the response's *Replay-Nonce* header, if present."""
        if nonce := resp.headers.get("Replay-Nonce"):
            logger.debug("Storing new nonce %s", nonce)
            self._nonce = nonce

    def discard_nonce(self) -> None:
        self._nonce = None

    @property
    def cached_nonce(self) -> typing.Optional[str]:
        return self._nonce
