"""lastcall - Entry Point

Usage:
    python -m lastcall [--config PATH] [--log-level LEVEL] [--json-logs] COMMAND

Commands:
    run              - Start the bot (default)
    scan             - Run one forced scan and print the summary
    claim            - Run one claim sweep and print the summary
    stop-loss-check  - Run one stop-loss pass and print the report
    approve          - Approve USDC spending for the exchanges
    settings         - export | import FILE | reset
    version          - Show version

Examples:
    python -m lastcall
    python -m lastcall --config config/production.toml run
    python -m lastcall scan --asset btc
    python -m lastcall claim --days 3
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from lastcall import __version__


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="lastcall",
        description="Polymarket hourly up/down price-threshold trading bot",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"lastcall {__version__}",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (TOML)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level (overrides lastcall.log_level)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        default=None,
        help="Emit JSON log lines",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("run", help="Start the trading bot")

    scan = subparsers.add_parser("scan", help="Run one forced scan")
    scan.add_argument("--asset", choices=["btc", "eth", "sol"], default=None)

    claim = subparsers.add_parser("claim", help="Run one claim sweep")
    claim.add_argument("--days", type=int, default=None, help="Days to look back")

    subparsers.add_parser("stop-loss-check", help="Run one stop-loss pass")
    subparsers.add_parser("approve", help="Approve USDC for the exchanges")

    settings = subparsers.add_parser("settings", help="Manage operator settings")
    settings_sub = settings.add_subparsers(dest="settings_command", required=True)
    settings_sub.add_parser("export", help="Print settings JSON")
    import_cmd = settings_sub.add_parser("import", help="Import settings JSON from a file")
    import_cmd.add_argument("file", type=Path)
    settings_sub.add_parser("reset", help="Reset settings to defaults")

    subparsers.add_parser("version", help="Show version")

    return parser.parse_args(argv)


def find_config_file(specified: Path | None) -> Path | None:
    """Find configuration file."""
    if specified and specified.exists():
        return specified

    search_paths = [
        Path("config/default.toml"),
        Path("lastcall.toml"),
        Path("/etc/lastcall/lastcall.toml"),
    ]
    for path in search_paths:
        if path.exists():
            return path
    return None


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def run_command(args: argparse.Namespace) -> int:
    """Build the app and run the selected command."""
    import structlog

    from lastcall.app import LastCallApp
    from lastcall.core.config import ConfigManager
    from lastcall.core.errors import LastCallError
    from lastcall.core.logging import setup_logging

    config_path = find_config_file(args.config)
    config = ConfigManager(config_path)

    setup_logging(
        level=args.log_level or config.get("lastcall.log_level", "INFO"),
        json_output=args.json_logs if args.json_logs is not None else config.get_bool("lastcall.log_json", False),
        log_file=config.get("lastcall.log_file"),
    )
    log = structlog.get_logger()
    log.info(
        "lastcall_command",
        command=args.command or "run",
        version=__version__,
        config=str(config_path) if config_path else "defaults",
    )

    app = LastCallApp(config)
    command = args.command or "run"

    if command == "run":
        try:
            await app.run_forever()
            return 0
        except Exception as e:
            log.error("fatal_error", error=str(e), exc_info=True)
            return 1

    if command == "settings":
        try:
            if args.settings_command == "export":
                print(app.scheduler.export_settings())
            elif args.settings_command == "import":
                app.scheduler.import_settings(args.file.read_text())
                print(f"Imported settings from {args.file}")
            else:
                app.settings.reset_to_defaults()
                print("Settings reset to defaults")
        except (OSError, ValueError) as e:
            print(f"Settings error: {e}", file=sys.stderr)
            return 1
        return 0

    await app.connect()
    try:
        if command == "scan":
            summary = await app.scheduler.force_scan(args.asset)
            _print_json(summary.to_dict())
            return 1 if summary.errors else 0

        if command == "claim":
            record = app.scheduler.start_claim_all(args.days)
            record = await app.scheduler.background_tasks.wait(record.task_id)
            _print_json(record.to_dict())
            return 0 if record.error is None else 1

        if command == "stop-loss-check":
            report = await app.scheduler.trigger_stop_loss_check()
            _print_json(report.to_dict())
            return 0 if report.failed == 0 else 1

        if command == "approve":
            record = app.scheduler.start_approval()
            record = await app.scheduler.background_tasks.wait(record.task_id)
            _print_json(record.to_dict())
            return 0 if record.error is None else 1
    except LastCallError as e:
        log.error("command_failed", command=command, error=str(e))
        return 1
    finally:
        await app.close()

    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "version":
        print(f"lastcall {__version__}")
        return 0

    return asyncio.run(run_command(args))


if __name__ == "__main__":
    sys.exit(main())
