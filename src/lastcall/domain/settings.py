"""
Operator-editable bot settings.

These are the runtime knobs an operator changes while the bot runs (asset
price bands, trading window, stop-loss threshold ...). Static process
configuration (endpoints, secrets, paths) stays in ConfigManager.

Monetary and price values are Decimal in memory and strings in JSON.
"""
from dataclasses import dataclass, field, fields, replace
from decimal import Decimal, InvalidOperation
from typing import Any

SUPPORTED_ASSETS = ("btc", "eth", "sol")
GAS_SPEEDS = ("safeLow", "standard", "fast")


class SettingsValidationError(ValueError):
    """Settings document failed validation."""


@dataclass(frozen=True)
class AssetSettings:
    enabled: bool = False
    bet_size: Decimal = Decimal("90")
    min_price: Decimal = Decimal("0.90")
    max_price: Decimal = Decimal("0.94")
    auto_claim_enabled: bool = True


@dataclass(frozen=True)
class TradingWindowSettings:
    start_minute: int = 45
    end_minute: int = 59


@dataclass(frozen=True)
class VolatilitySettings:
    enabled: bool = False
    skip_volatile_hours: bool = True
    volatile_hours_et: tuple[int, ...] = (9, 10, 15, 16)
    check_realtime_volatility: bool = True
    max_hourly_volatility_percent: Decimal = Decimal("2.0")
    check_spread: bool = True
    max_spread_cents: Decimal = Decimal("5")


@dataclass(frozen=True)
class StopLossSettings:
    enabled: bool = True
    threshold: Decimal = Decimal("0.70")


@dataclass(frozen=True)
class AutoClaimSettings:
    enabled: bool = True
    interval_minutes: int = 60
    days_back: int = 7


@dataclass(frozen=True)
class AdvancedSettings:
    scan_interval_seconds: int = 5
    rpc_url: str = ""
    gas_speed: str = "standard"


def _default_assets() -> dict[str, AssetSettings]:
    return {
        "btc": AssetSettings(enabled=True),
        "eth": AssetSettings(),
        "sol": AssetSettings(),
    }


@dataclass(frozen=True)
class BotSettings:
    """Complete settings document."""
    global_trading_enabled: bool = False
    assets: dict[str, AssetSettings] = field(default_factory=_default_assets)
    trading_window: TradingWindowSettings = field(default_factory=TradingWindowSettings)
    volatility: VolatilitySettings = field(default_factory=VolatilitySettings)
    stop_loss: StopLossSettings = field(default_factory=StopLossSettings)
    auto_claim: AutoClaimSettings = field(default_factory=AutoClaimSettings)
    advanced: AdvancedSettings = field(default_factory=AdvancedSettings)

    def asset(self, asset: str) -> AssetSettings:
        try:
            return self.assets[asset.lower()]
        except KeyError:
            raise SettingsValidationError(f"Unknown asset: {asset}") from None

    def with_asset(self, asset: str, **changes: Any) -> "BotSettings":
        current = self.asset(asset)
        assets = dict(self.assets)
        assets[asset.lower()] = _build(AssetSettings, {**_dump(current), **changes}, current)
        return replace(self, assets=assets)

    def to_dict(self) -> dict[str, Any]:
        return {
            "global_trading_enabled": self.global_trading_enabled,
            "assets": {name: _dump(a) for name, a in self.assets.items()},
            "trading_window": _dump(self.trading_window),
            "volatility": _dump(self.volatility),
            "stop_loss": _dump(self.stop_loss),
            "auto_claim": _dump(self.auto_claim),
            "advanced": _dump(self.advanced),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BotSettings":
        """Build settings from a (possibly partial) document.

        Missing keys keep their defaults; unknown keys are ignored.
        """
        defaults = cls()
        assets = dict(defaults.assets)
        for name, values in (data.get("assets") or {}).items():
            key = name.lower()
            if key not in SUPPORTED_ASSETS:
                raise SettingsValidationError(f"Unknown asset: {name}")
            assets[key] = _build(AssetSettings, values, assets.get(key, AssetSettings()))

        settings = cls(
            global_trading_enabled=_to_bool(
                data.get("global_trading_enabled", defaults.global_trading_enabled)
            ),
            assets=assets,
            trading_window=_build(
                TradingWindowSettings, data.get("trading_window"), defaults.trading_window
            ),
            volatility=_build(VolatilitySettings, data.get("volatility"), defaults.volatility),
            stop_loss=_build(StopLossSettings, data.get("stop_loss"), defaults.stop_loss),
            auto_claim=_build(AutoClaimSettings, data.get("auto_claim"), defaults.auto_claim),
            advanced=_build(AdvancedSettings, data.get("advanced"), defaults.advanced),
        )
        settings.validate()
        return settings

    def validate(self) -> None:
        for name, a in self.assets.items():
            if a.bet_size <= 0:
                raise SettingsValidationError(f"{name}: bet_size must be positive")
            if not (Decimal("0") < a.min_price <= a.max_price <= Decimal("1")):
                raise SettingsValidationError(
                    f"{name}: need 0 < min_price <= max_price <= 1, "
                    f"got {a.min_price}..{a.max_price}"
                )

        w = self.trading_window
        if not (0 <= w.start_minute <= w.end_minute <= 59):
            raise SettingsValidationError(
                f"trading window must satisfy 0 <= start <= end <= 59, "
                f"got {w.start_minute}..{w.end_minute}"
            )

        if any(h < 0 or h > 23 for h in self.volatility.volatile_hours_et):
            raise SettingsValidationError("volatile_hours_et must be hours 0-23")

        if not (Decimal("0") < self.stop_loss.threshold < Decimal("1")):
            raise SettingsValidationError("stop_loss threshold must be in (0, 1)")

        if self.auto_claim.interval_minutes < 1 or self.auto_claim.days_back < 1:
            raise SettingsValidationError("auto_claim interval and days_back must be >= 1")

        if self.advanced.scan_interval_seconds < 1:
            raise SettingsValidationError("scan_interval_seconds must be >= 1")
        if self.advanced.gas_speed not in GAS_SPEEDS:
            raise SettingsValidationError(
                f"gas_speed must be one of {', '.join(GAS_SPEEDS)}"
            )


def _dump(obj: Any) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in fields(obj):
        value = getattr(obj, f.name)
        if isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, tuple):
            value = list(value)
        out[f.name] = value
    return out


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.lower() in ("true", "1", "yes", "on")
    return bool(value)


def _build(cls: type, values: Any, base: Any) -> Any:
    """Overlay a dict of values onto a base dataclass instance, coercing types."""
    if not values:
        return base
    if not isinstance(values, dict):
        raise SettingsValidationError(f"{cls.__name__} must be an object")

    changes: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in values:
            continue
        current = getattr(base, f.name)
        raw = values[f.name]
        try:
            if isinstance(current, bool):
                changes[f.name] = _to_bool(raw)
            elif isinstance(current, Decimal):
                changes[f.name] = Decimal(str(raw))
            elif isinstance(current, int):
                changes[f.name] = int(raw)
            elif isinstance(current, tuple):
                changes[f.name] = tuple(int(v) for v in raw)
            else:
                changes[f.name] = str(raw)
        except (InvalidOperation, TypeError, ValueError) as e:
            raise SettingsValidationError(
                f"{cls.__name__}.{f.name}: invalid value {raw!r}"
            ) from e
    return replace(base, **changes)
