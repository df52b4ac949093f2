import logging
import os
from dataclasses import dataclass

from palm.provider import MISTRAL_BASE_URL, MISTRAL_DEFAULT_MODEL

LOG_FORMAT = '%(asctime)s:%(name)s:%(levelname)s:%(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def get_var(key: str, fallback: str) -> str:
    """Return the environment variable *key*, or *fallback* when unset."""
    return os.environ.get(key, fallback)


@dataclass
class Settings:
    """Process configuration read from the environment."""

    api_key: str = ""
    model: str = MISTRAL_DEFAULT_MODEL
    base_url: str = MISTRAL_BASE_URL
    http_addr: str = ":4096"
    log_level: str = "WARNING"
    max_turns: int | None = 50

    @classmethod
    def from_env(cls) -> "Settings":
        max_turns = get_var("PALM_MAX_TURNS", "50").strip().lower()
        return cls(
            api_key=get_var("MISTRAL_API_KEY", ""),
            model=get_var("PALM_MODEL", MISTRAL_DEFAULT_MODEL),
            base_url=get_var("PALM_BASE_URL", MISTRAL_BASE_URL),
            http_addr=get_var("HTTP_ADDR", ":4096"),
            log_level=get_var("PALM_LOG_LEVEL", "WARNING").upper(),
            max_turns=int(max_turns) if max_turns not in ("", "0", "none") else None,
        )

    @property
    def host_port(self) -> tuple[str, int]:
        """Split ``http_addr`` (``host:port`` or ``:port``) for the server."""
        host, _, port = self.http_addr.rpartition(":")
        return host or "0.0.0.0", int(port)


def configure_logging(level: str | int = logging.INFO, log_file: str | None = None) -> None:
    """Install handlers on the root logger.

    Only called by entry points; importing palm never touches logging
    configuration.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )
