import logging

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestServer

from acmeclient.client import AcmeClient, ChallengeSolver
from acmeclient.models import ChallengeType
from acmeclient.oplog import OperationLog
from .acme_server import AcmeTestServer

log = logging.getLogger(__name__)


class ZoneSolver(ChallengeSolver):
    """Publishes challenge records to the test server's in-memory zone."""

    SUPPORTED_CHALLENGES = frozenset([ChallengeType.DNS_01])

    def __init__(self, zone: dict):
        super().__init__()
        self.zone = zone
        self.completed = []
        self.cleaned_up = []

    async def complete_challenge(self, identifier, challenge):
        self.zone[challenge.dns_record_name] = challenge.dns_record_value
        self.completed.append(challenge)

    async def cleanup_challenge(self, identifier, challenge):
        self.zone.pop(challenge.dns_record_name, None)
        self.cleaned_up.append(challenge)


@pytest.fixture
def acme_server():
    return AcmeTestServer()


@pytest_asyncio.fixture
async def directory_url(acme_server):
    server = TestServer(acme_server.app)
    await server.start_server()
    log.info("ACME test server at %s", server.make_url("/directory"))
    yield str(server.make_url("/directory"))
    await server.close()


@pytest.fixture
def solver(acme_server):
    return ZoneSolver(acme_server.dns_records)


@pytest.fixture
def events():
    return []


@pytest.fixture
def oplog(events):
    oplog = OperationLog()
    oplog.add_sink(events.append)
    return oplog


@pytest.fixture
def client_config(directory_url):
    return AcmeClient.Config(
        directory=directory_url,
        contact=["mailto:a@b.com"],
        retry_delay=0.05,
        poll_interval=0.01,
        poll_timeout=1,
        challenge_attempts=5,
        challenge_interval=0.01,
    )


@pytest_asyncio.fixture
async def client(client_config, solver, oplog):
    async with AcmeClient(client_config, solver=solver, oplog=oplog) as client:
        yield client


@pytest_asyncio.fixture
async def account(client):
    return await client.accounts.register(["mailto:a@b.com"])
