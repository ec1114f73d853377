"""
Unit tests for BotSettings and SettingsManager.
"""
import json
import pytest
from decimal import Decimal
from unittest.mock import MagicMock

from lastcall.domain.settings import BotSettings, SettingsValidationError
from lastcall.services.settings import SettingsManager


class TestBotSettings:
    """Test validation and (de)serialization."""

    def test_defaults(self):
        settings = BotSettings()

        assert settings.global_trading_enabled is False
        assert settings.asset("BTC").enabled is True
        assert settings.asset("eth").enabled is False
        assert settings.trading_window.start_minute == 45
        assert settings.stop_loss.threshold == Decimal("0.70")

    def test_partial_document_keeps_defaults(self):
        settings = BotSettings.from_dict({"assets": {"eth": {"enabled": "true", "bet_size": 25}}})

        assert settings.asset("eth").enabled is True
        assert settings.asset("eth").bet_size == Decimal("25")
        assert settings.asset("eth").min_price == Decimal("0.90")
        assert settings.asset("btc").enabled is True

    def test_round_trip(self):
        original = BotSettings().with_asset("sol", enabled=True, max_price="0.96")

        restored = BotSettings.from_dict(json.loads(json.dumps(original.to_dict())))

        assert restored == original

    @pytest.mark.parametrize(
        "document",
        [
            {"assets": {"btc": {"min_price": "0.95", "max_price": "0.90"}}},
            {"assets": {"btc": {"bet_size": "0"}}},
            {"assets": {"doge": {"enabled": True}}},
            {"trading_window": {"start_minute": 50, "end_minute": 40}},
            {"trading_window": {"end_minute": 60}},
            {"stop_loss": {"threshold": "1.2"}},
            {"advanced": {"gas_speed": "ludicrous"}},
            {"volatility": {"volatile_hours_et": [9, 25]}},
            {"assets": {"btc": {"bet_size": "lots"}}},
        ],
    )
    def test_invalid_documents(self, document):
        with pytest.raises(SettingsValidationError):
            BotSettings.from_dict(document)

    def test_unknown_asset_lookup(self):
        with pytest.raises(SettingsValidationError):
            BotSettings().asset("doge")


class TestSettingsManager:
    """Test persistence and listeners."""

    def test_missing_file_yields_defaults(self, tmp_path):
        manager = SettingsManager(tmp_path / "settings.json")

        assert manager.load() == BotSettings()

    def test_invalid_file_yields_defaults(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json")

        assert SettingsManager(path).load() == BotSettings()

    def test_changes_persist(self, tmp_path):
        path = tmp_path / "nested" / "settings.json"
        manager = SettingsManager(path)
        manager.update_asset("eth", enabled=True, bet_size="40")
        manager.set_global_trading(True)

        reloaded = SettingsManager(path).load()

        assert reloaded.global_trading_enabled is True
        assert reloaded.asset("eth").bet_size == Decimal("40")
        assert not path.with_suffix(".json.tmp").exists()

    def test_rejected_update_leaves_settings_untouched(self, tmp_path):
        manager = SettingsManager(tmp_path / "settings.json")
        before = manager.settings

        with pytest.raises(SettingsValidationError):
            manager.update_asset("btc", min_price="0.99", max_price="0.50")

        assert manager.settings == before

    def test_update_section(self):
        manager = SettingsManager()

        manager.update_section("trading_window", {"start_minute": 30})

        assert manager.settings.trading_window.start_minute == 30
        assert manager.settings.trading_window.end_minute == 59

    def test_unknown_section(self):
        with pytest.raises(SettingsValidationError):
            SettingsManager().update_section("assets", {})

    def test_listeners_notified(self):
        manager = SettingsManager()
        listener = MagicMock()
        manager.add_listener(listener)

        manager.set_global_trading(True)

        listener.assert_called_once()
        assert listener.call_args.args[0].global_trading_enabled is True

    def test_failing_listener_does_not_block_update(self):
        manager = SettingsManager()
        manager.add_listener(MagicMock(side_effect=RuntimeError("boom")))

        manager.set_global_trading(True)
        assert manager.settings.global_trading_enabled is True

    def test_export_import(self):
        source = SettingsManager()
        source.update_asset("sol", enabled=True)
        target = SettingsManager()

        target.import_json(source.export_json())

        assert target.settings == source.settings

    @pytest.mark.parametrize("text", ["[1, 2]", "not json"])
    def test_import_rejects_bad_documents(self, text):
        with pytest.raises(SettingsValidationError):
            SettingsManager().import_json(text)

    def test_reset(self):
        manager = SettingsManager()
        manager.set_global_trading(True)

        assert manager.reset_to_defaults() == BotSettings()

    def test_from_config(self, mock_config, tmp_path):
        mock_config.values["settings.path"] = str(tmp_path / "s.json")

        manager = SettingsManager.from_config(mock_config)
        assert manager.path == tmp_path / "s.json"
