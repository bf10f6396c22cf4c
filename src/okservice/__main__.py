"""Run the service: ``python -m okservice``."""

import asyncio
import logging
import sys

from okservice.config import get_settings
from okservice.main import app
from okservice.server import Service


def main() -> int:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    return asyncio.run(Service(app, settings).run())


if __name__ == "__main__":
    sys.exit(main())
