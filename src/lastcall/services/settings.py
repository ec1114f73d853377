"""Settings Manager - persisted operator settings.

Holds the current BotSettings, persists every change to a JSON file and
notifies listeners. Updates are validated before they are applied; a
rejected update leaves the current settings untouched. Last write wins.
"""

import json
import os
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from lastcall.core.config import ConfigManager
from lastcall.domain.settings import BotSettings, SettingsValidationError

log = structlog.get_logger()

SECTIONS = ("trading_window", "volatility", "stop_loss", "auto_claim", "advanced")

SettingsListener = Callable[[BotSettings], None]


class SettingsManager:
    """Usage:
        manager = SettingsManager(Path("data/settings.json"))
        manager.load()
        manager.update_asset("btc", bet_size="50")
    """

    def __init__(self, path: Optional[Path] = None):
        self._path = path
        self._settings = BotSettings()
        self._listeners: list[SettingsListener] = []
        self._log = log.bind(component="settings_manager")

    @classmethod
    def from_config(cls, config: ConfigManager) -> "SettingsManager":
        path = config.get("settings.path", "./data/settings.json")
        return cls(Path(path) if path else None)

    @property
    def settings(self) -> BotSettings:
        return self._settings

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def add_listener(self, listener: SettingsListener) -> None:
        self._listeners.append(listener)

    def load(self) -> BotSettings:
        """Load from file; a missing or invalid file yields defaults."""
        if self._path is None or not self._path.exists():
            self._log.info("settings_defaults_used", path=str(self._path))
            self._settings = BotSettings()
            return self._settings

        try:
            data = json.loads(self._path.read_text())
            self._settings = BotSettings.from_dict(data)
            self._log.info("settings_loaded", path=str(self._path))
        except (OSError, ValueError) as e:
            self._log.error("settings_load_failed", path=str(self._path), error=str(e))
            self._settings = BotSettings()
        return self._settings

    def save(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._settings.to_dict(), indent=2))
        os.replace(tmp, self._path)

    def _apply(self, settings: BotSettings, change: str) -> BotSettings:
        self._settings = settings
        self.save()
        self._log.info("settings_updated", change=change)
        for listener in list(self._listeners):
            try:
                listener(settings)
            except Exception as e:
                self._log.error("settings_listener_failed", error=str(e), exc_info=True)
        return settings

    def update_asset(self, asset: str, **changes: Any) -> BotSettings:
        """Raises SettingsValidationError for unknown assets or invalid values."""
        updated = self._settings.with_asset(asset, **changes)
        updated.validate()
        return self._apply(updated, f"asset:{asset.lower()}")

    def update_section(self, section: str, values: dict[str, Any]) -> BotSettings:
        if section not in SECTIONS:
            raise SettingsValidationError(f"Unknown settings section: {section}")
        data = self._settings.to_dict()
        data[section] = {**data[section], **values}
        return self._apply(BotSettings.from_dict(data), f"section:{section}")

    def set_global_trading(self, enabled: bool) -> BotSettings:
        data = self._settings.to_dict()
        data["global_trading_enabled"] = enabled
        return self._apply(BotSettings.from_dict(data), "global_trading_enabled")

    def export_json(self) -> str:
        return json.dumps(self._settings.to_dict(), indent=2)

    def import_json(self, text: str) -> BotSettings:
        """Replace settings with a (possibly partial) document merged over defaults."""
        try:
            data = json.loads(text)
        except ValueError as e:
            raise SettingsValidationError(f"Invalid settings JSON: {e}") from e
        if not isinstance(data, dict):
            raise SettingsValidationError("Settings document must be a JSON object")
        return self._apply(BotSettings.from_dict(data), "import")

    def reset_to_defaults(self) -> BotSettings:
        return self._apply(BotSettings(), "reset")
