"""
Component logging.
Timestamped console output shared by every protocol component.
"""

from datetime import datetime

from .config import settings


class Loggable:
    """Mixin giving a component a named, timestamped log line."""

    name: str = "bcmeta"

    def log(self, message: str) -> None:
        """Log a message with component name and timestamp."""
        if not settings.verbose:
            return
        timestamp = datetime.now().strftime("%H:%M:%S")
        print(f"[{timestamp}] [{self.name}] {message}")
