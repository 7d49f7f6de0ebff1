"""User-facing notifications.

The controller never renders anything itself. Alerts, toasts and the two
interactive questions it asks (edit text, delete confirmation) go through a
Notifier, which a front end implements. LoggingNotifier is the headless
default.
"""
import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ToastLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notifier:
    """Interface implemented by front ends."""

    def alert(self, message: str) -> None:
        raise NotImplementedError

    def toast(self, message: str, level: ToastLevel = ToastLevel.INFO) -> None:
        raise NotImplementedError

    def prompt(self, message: str, default: str = "") -> Optional[str]:
        """Ask for text; None means the user cancelled."""
        raise NotImplementedError

    def confirm(self, message: str) -> bool:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Headless notifier: writes to the log and answers questions itself.

    Args:
        auto_confirm: Answer to every confirmation question.
    """

    def __init__(self, auto_confirm: bool = True) -> None:
        self.auto_confirm = auto_confirm

    def alert(self, message: str) -> None:
        logger.warning("ALERT: %s", message)

    def toast(self, message: str, level: ToastLevel = ToastLevel.INFO) -> None:
        log_level = logging.WARNING if level in (ToastLevel.WARNING, ToastLevel.ERROR) else logging.INFO
        logger.log(log_level, "[%s] %s", level.value, message)

    def prompt(self, message: str, default: str = "") -> Optional[str]:
        logger.info("Prompt not supported headless, cancelling: %s", message)
        return None

    def confirm(self, message: str) -> bool:
        logger.info("%s -> %s", message, "yes" if self.auto_confirm else "no")
        return self.auto_confirm
