import json
import logging
import typing
from pathlib import Path

import pydantic
import pytest
import yaml

from acmeclient.client import AcmeClient
from acmeclient.client.challenge_solver import ChallengeSolver, DummySolver
from acmeclient.config import Config, configure_logging, load_config
from acmeclient.oplog import OperationLog, StructuredFormatter
from acmeclient.plugin_base import PluginRegistry


@pytest.fixture
def config_yaml():
    data = """
client:
  directory: 'https://acme-staging-v02.api.letsencrypt.org/directory' # Let's Encrypt directory
  private_key: '/etc/acmeclient/account.key'
  contact:
    - 'mailto:acmeclient@example.org'
  max_retries: 5
  retry_delay: 0.5
  post_as_get: false
  challenge_solver:
    type: dummy
logging:
  version: 1
  formatters:
    simple:
      format: '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
  handlers:
    console:
      class: logging.StreamHandler
      level: DEBUG
      formatter: simple
      stream: ext://sys.stdout
  root:
    level: DEBUG
    handlers: [console]
  disable_existing_loggers: no
"""
    return data


@pytest.fixture
def config_json(config_yaml):
    data = yaml.load(config_yaml, Loader=yaml.SafeLoader)
    return data


@pytest.fixture
def config_obj(config_json):
    data = Config.model_validate(config_json)
    return data


def test_config(config_obj):
    client = config_obj.client
    assert client.private_key == Path("/etc/acmeclient/account.key")
    assert client.contact == ["mailto:acmeclient@example.org"]
    assert (client.max_retries, client.retry_delay, client.post_as_get) == (5, 0.5, False)
    assert (client.poll_timeout, client.poll_interval) == (300, 5)
    assert isinstance(client.challenge_solver, DummySolver.Config)
    assert config_obj.logging["version"] == 1


def test_defaults():
    client = Config.model_validate({"client": {"directory": "https://acme.test/directory"}}).client
    assert (client.max_retries, client.retry_delay, client.post_as_get) == (3, 1.0, True)
    assert client.challenge_solver.type == "dummy"
    assert client.private_key is None


@pytest.mark.parametrize(
    "client",
    [
        {"directory": "https://acme.test/directory", "unknown": 1},
        {"directory": "https://acme.test/directory", "challenge_solver": {"type": "rfc2136"}},
        {"contact": ["mailto:a@b.com"]},
    ],
)
def test_invalid(client):
    with pytest.raises(pydantic.ValidationError):
        Config.model_validate({"client": client})


@PluginRegistry.register_plugin("zonefile")
class ZonefileSolver(ChallengeSolver):
    class Config(ChallengeSolver.Config):
        type: typing.Literal["zonefile"] = "zonefile"
        path: Path

    async def complete_challenge(self, identifier, challenge):
        pass

    async def cleanup_challenge(self, identifier, challenge):
        pass


def test_registered_solver():
    client = Config.model_validate(
        {
            "client": {
                "directory": "https://acme.test/directory",
                "challenge_solver": {"type": "zonefile", "path": "/var/named/acme.zone"},
            }
        }
    ).client

    assert isinstance(client.challenge_solver, ZonefileSolver.Config)
    assert client.challenge_solver.path == Path("/var/named/acme.zone")

    solver = AcmeClient(client).solver
    assert isinstance(solver, ZonefileSolver)
    assert solver.config is client.challenge_solver

    with pytest.raises(pydantic.ValidationError):
        Config.model_validate(
            {
                "client": {
                    "directory": "https://acme.test/directory",
                    "challenge_solver": {"type": "zonefile", "path": "/tmp/z", "ttl": 60},
                }
            }
        )


def test_load_config(tmp_path, config_yaml):
    path = tmp_path / "config.yml"
    path.write_text(config_yaml)

    config = load_config(str(path))
    assert config.client.directory == "https://acme-staging-v02.api.letsencrypt.org/directory"


def test_configure_logging_structured(config_obj, capsys):
    config_obj.logging = {
        "version": 1,
        "formatters": {"structured": {"()": "acmeclient.oplog.StructuredFormatter"}},
        "handlers": {
            "operations": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "stream": "ext://sys.stdout",
            }
        },
        "loggers": {"acmeclient.operations": {"level": "INFO", "handlers": ["operations"], "propagate": False}},
        "disable_existing_loggers": False,
    }
    configure_logging(config_obj)
    logger = logging.getLogger("acmeclient.operations")

    try:
        assert isinstance(logger.handlers[0].formatter, StructuredFormatter)
        OperationLog().operation("order_create", "Created order", duration_ms=1.5, domains=["example.com"])
    finally:
        logger.handlers.clear()
        logger.propagate = True

    line = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert line["operation"] == "order_create"
    assert line["context"] == {"domains": ["example.com"]}
    assert line["duration_ms"] == 1.5


@pytest.fixture
def example_config(request):
    return yaml.safe_load(request.param.read_text())


path = [i for i in (Path(__file__).parent.parent / "conf").glob("*.sample.yml")]


@pytest.mark.parametrize("example_config", path, indirect=True, ids=[i.name for i in path])
def test_examples(example_config):
    Config.model_validate(example_config)
