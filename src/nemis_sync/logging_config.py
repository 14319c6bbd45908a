import logging
import os
import re
from pathlib import Path
from typing import Optional


# Portal secrets that can end up inside logged snippets or request lines.
_SECRET_PATTERNS = (
    re.compile(r"(ASP\.NET_SessionId=)[^;\s&|]+", re.I),
    re.compile(r"(__VIEWSTATE=|__EVENTVALIDATION=|\|hiddenField\|__VIEWSTATE\|)[^&\s|]+", re.I),
    re.compile(r"(Password\"?\s*[=:]\s*\"?)[^&\s\"|]+", re.I),
)


class RedactSecretsFilter(logging.Filter):
    """Masks session cookies, view-state blobs and passwords in formatted messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = message
        for pattern in _SECRET_PATTERNS:
            redacted = pattern.sub(r"\1***", redacted)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: str = "INFO", file_path: Optional[str] = None) -> None:
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    redact = RedactSecretsFilter()
    stream = logging.StreamHandler()
    stream.addFilter(redact)
    handlers: list[logging.Handler] = [stream]

    if file_path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.addFilter(redact)
        handlers.append(file_handler)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        handlers=handlers,
        force=True,  # the CLI calls this again once the config file is loaded
    )

    # httpx logs every request line at INFO
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(os.getenv("NOISY_LOG_LEVEL", "WARNING"))
