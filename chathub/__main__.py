import logging

import uvicorn

from .config import get_settings
from .logging_config import setup_logging

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    setup_logging(settings.log_level)
    logger.info("Starting chathub on %s:%s", settings.host, settings.port)
    uvicorn.run("chathub.app:create_app", factory=True, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
