from __future__ import annotations
"""Client settings persistence helpers."""

from dataclasses import asdict, dataclass
import json
import logging
from pathlib import Path

from .paginator import MAX_PAGE_SIZE
from .transport import DEFAULT_CONNECT_TIMEOUT, DEFAULT_READ_TIMEOUT

LOGGER = logging.getLogger(__name__)


@dataclass
class ClientSettings:
    """Tunables shared by every client built from the same settings file."""

    page_size: int = MAX_PAGE_SIZE
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    verify_tls: bool = True
    app_name: str = ""
    app_version: str = ""


def _positive_int(value, default: int, *, maximum: int | None = None) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    if number <= 0:
        return default
    if maximum is not None and number > maximum:
        return maximum
    return number


def _positive_float(value, default: float) -> float:
    if isinstance(value, bool):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if number > 0 else default


def _text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


class SettingsStorage:
    """JSON-backed persistence for :class:`ClientSettings`."""

    def __init__(self, storage_path: str | Path | None = None):
        if storage_path is None:
            storage_path = Path.home() / ".s3_client_settings.json"
        self._path = Path(storage_path)

    def load(self) -> ClientSettings:
        if not self._path.exists():
            return ClientSettings()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            LOGGER.debug("Ignoring unreadable settings file %s", self._path)
            return ClientSettings()
        if not isinstance(data, dict):
            return ClientSettings()
        verify_tls = data.get("verify_tls", ClientSettings.verify_tls)
        return ClientSettings(
            page_size=_positive_int(data.get("page_size"), ClientSettings.page_size, maximum=MAX_PAGE_SIZE),
            connect_timeout=_positive_float(data.get("connect_timeout"), ClientSettings.connect_timeout),
            read_timeout=_positive_float(data.get("read_timeout"), ClientSettings.read_timeout),
            verify_tls=verify_tls if isinstance(verify_tls, bool) else ClientSettings.verify_tls,
            app_name=_text(data.get("app_name")),
            app_version=_text(data.get("app_version")),
        )

    def save(self, settings: ClientSettings) -> None:
        payload = asdict(settings)
        payload["page_size"] = min(max(int(settings.page_size), 1), MAX_PAGE_SIZE)
        payload["connect_timeout"] = max(float(settings.connect_timeout), 1.0)
        payload["read_timeout"] = max(float(settings.read_timeout), 1.0)
        payload["verify_tls"] = bool(settings.verify_tls)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError:
            # Persist best-effort; ignore filesystem issues.
            LOGGER.debug("Could not write settings file %s", self._path)
            return
