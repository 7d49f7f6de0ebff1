"""forumlive client entry point.

Builds a ForumApp from ``forumlive.settings.yaml`` with logging configured
the same way for every front end.

Modules:
    - api: REST client and wire schemas for the forum service
    - live: push channel, event reconciliation, typing, outbox
    - session: ForumApp controller (the operations a front end calls)
    - storage: durable local key/value store
"""
import logging
from pathlib import Path
from typing import Optional

from .config import AppConfig, get_config, load_config
from .notify import Notifier
from .session import ForumApp

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(config: AppConfig) -> None:
    """Apply the configured level and quiet the HTTP stack."""
    logging.basicConfig(level=logging.INFO, format=DEFAULT_FORMAT)

    # `logging.level: "debug"` in forumlive.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
    else:
        logger.warning("Unknown log level %r, keeping INFO", config.logging.level)

    # httpx/httpcore log every request line and connection event, including
    # each reconnect of the push stream.
    for _noisy in (
        "httpx",
        "httpcore",
        "httpcore.http11",
        "httpcore.connection",
    ):
        logging.getLogger(_noisy).setLevel(logging.WARNING)


def build_app(
    settings_path: Optional[Path] = None,
    notifier: Optional[Notifier] = None,
) -> ForumApp:
    """Load config, configure logging and return an unstarted ForumApp.

    Call ``await app.start()`` to restore a saved session and outbox.
    """
    config = load_config(settings_path) if settings_path is not None else get_config()
    configure_logging(config)
    logger.info("forumlive client configured for %s", config.api.base_url)
    return ForumApp(config, notifier=notifier)
