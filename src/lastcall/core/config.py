"""
lastcall configuration: a TOML file overlaid with LASTCALL_* environment
variables.

Keys are dotted paths into the TOML tables ("execution.order_type"). The
environment wins over the file: "polymarket.private_key" is read from
LASTCALL_POLYMARKET_PRIVATE_KEY first, which is where signing secrets are
expected to live.
"""
import os
import tomllib
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")

_MISSING = object()
_TRUTHY = frozenset({"true", "yes", "on", "1"})
_FALSY = frozenset({"false", "no", "off", "0"})


def _coerce_env(raw: str) -> Any:
    """Best-effort typing of an environment string."""
    lowered = raw.strip().lower()
    if lowered in _TRUTHY - {"1"}:
        return True
    if lowered in _FALSY - {"0"}:
        return False
    # 0x-prefixed keys and addresses must never become numbers
    if lowered.startswith("0x"):
        return raw
    for number in (int, float):
        try:
            return number(raw)
        except ValueError:
            continue
    if "," in raw:
        return [part.strip() for part in raw.split(",") if part.strip()]
    return raw


def _lookup(data: dict[str, Any], dotted: str) -> Any:
    node: Any = data
    for part in dotted.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    return [value]


class ConfigManager:
    """Read-only view over the TOML file and environment.

    Usage:
        config = ConfigManager(Path("config/default.toml"))
        order_type = config.get("execution.order_type", "FAK")
        interval = config.get_float("scheduler.min_fetch_interval_seconds", 3.0)
    """

    def __init__(self, config_path: Optional[Path] = None, env_prefix: str = "LASTCALL_") -> None:
        self._path = config_path
        self._env_prefix = env_prefix
        self._data: dict[str, Any] = {}
        self.reload()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def raw_data(self) -> dict[str, Any]:
        """The parsed TOML document, without environment overrides."""
        return dict(self._data)

    def reload(self) -> None:
        """Re-read the TOML file; a missing file leaves an empty document."""
        if self._path is not None and self._path.exists():
            self._data = tomllib.loads(self._path.read_text(encoding="utf-8"))

    def env_key(self, key: str) -> str:
        return self._env_prefix + key.upper().replace(".", "_")

    def get(self, key: str, default: Any = None) -> Any:
        raw = os.environ.get(self.env_key(key))
        if raw is not None:
            return _coerce_env(raw)
        value = _lookup(self._data, key)
        return default if value is _MISSING else value

    def _typed(self, key: str, default: T, convert: Callable[[Any], T]) -> T:
        value = self.get(key)
        return default if value is None else convert(value)

    def get_int(self, key: str, default: int = 0) -> int:
        return self._typed(key, default, int)

    def get_float(self, key: str, default: float = 0.0) -> float:
        return self._typed(key, default, float)

    def get_decimal(self, key: str, default: Decimal = Decimal("0")) -> Decimal:
        return self._typed(key, default, lambda v: Decimal(str(v)))

    def get_bool(self, key: str, default: bool = False) -> bool:
        return self._typed(key, default, _as_bool)

    def get_list(self, key: str, default: Optional[list[Any]] = None) -> list[Any]:
        """A list value; comma-separated strings (usually from env) are split."""
        return self._typed(key, default if default is not None else [], _as_list)

    def get_section(self, section: str) -> dict[str, Any]:
        """A whole TOML table; environment overrides do not apply here."""
        value = _lookup(self._data, section)
        return value if isinstance(value, dict) else {}
