"""Access to the service log files and masking of personal data in them."""
from __future__ import annotations

import re
from pathlib import Path

LOG_FILE_NAME = "diag-services.log"


class LogAnonymizer:
    """Replace addresses, credentials and secrets before logs leave the host."""

    _patterns = [
        (re.compile(r"(?P<scheme>[a-z][a-z0-9+.-]*://)[^\s:/@]+:[^\s/@]+@", re.IGNORECASE), r"\g<scheme><USER>:<PASSWORD>@"),
        (re.compile(r"(?P<key>\b(?:apikey|api_key|password|token)=)[^&\s\"']+", re.IGNORECASE), r"\g<key><HIDDEN>"),
        (re.compile(r"\b[\w.+-]+@[\w-]+(?:\.[\w-]+)+\b"), "<EMAIL>"),
        (re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"), "<IP>"),
    ]

    def anonymize(self, text: str) -> str:
        for pattern, replacement in self._patterns:
            text = pattern.sub(replacement, text)
        return text


class LogContentProvider:
    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)

    def logs_dir(self) -> Path:
        return self.data_dir / "logs"

    def log_file(self) -> Path:
        return self.logs_dir() / LOG_FILE_NAME

    def get_log(self) -> str:
        path = self.log_file()
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8", errors="replace")
