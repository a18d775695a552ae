import logging
import logging.config
import typing

import yaml
from pydantic_settings import BaseSettings

from acmeclient.client.client import AcmeClient

logger = logging.getLogger(__name__)


class Config(BaseSettings, extra="forbid"):
    client: AcmeClient.Config
    logging: typing.Any = None
    """A :func:`logging.config.dictConfig` mapping."""


def load_config(config_file: str) -> Config:
    """Loads and validates a YAML config file.

    :param config_file: Path of the config file.
    :raises: :class:`pydantic.ValidationError` If the file does not describe a valid config.
    :return: The parsed config.
    """
    with open(config_file) as stream:
        config = yaml.safe_load(stream)

    return Config.model_validate(config)


def configure_logging(config: Config) -> None:
    """Applies the config's *logging* section, if there is one.

    Handlers may use :class:`~acmeclient.oplog.StructuredFormatter` via the formatter key
    ``(): acmeclient.oplog.StructuredFormatter`` to write JSON lines.
    """
    if config.logging:
        logging.config.dictConfig(config.logging)
        logger.debug("Logging configured")
