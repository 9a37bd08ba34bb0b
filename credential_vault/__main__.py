"""Run the credential vault HTTP service: ``python -m credential_vault``."""
import os
import sys
import logging

from aiohttp import web

from .exceptions import KeyDerivationError
from .handlers import create_app
from .vault.config import VaultConfig

logger = logging.getLogger("credential_vault")


def main() -> None:
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = VaultConfig.from_env()
        app = create_app(config)
    except KeyDerivationError as err:
        logger.critical("Refusing to start: %s", err)
        sys.exit(1)
    web.run_app(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
