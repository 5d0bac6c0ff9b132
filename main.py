"""Command line entry point: run the tracker service or talk to a running one."""
import argparse
import datetime
import sys

from config import ConfigError, load_settings
from ipc import IPCError, send_command
from utils import log_error

CLIENT_COMMANDS = {
    "show_trades": "showTrades",
    "status": "status",
    "hideout": "hideout",
    "kingsmarch": "kingsmarch",
}


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch the Path of Exile client log and manage trade whispers.")
    parser.add_argument("--config", help="Path to config.json (default: ~/.config/exile-trade-tracker/config.json).")
    parser.add_argument("--debug", action="store_true", help="Write debug lines to the tracker log.")
    parser.add_argument("--log", dest="log_path", help="Client.txt to follow instead of the resolved one.")
    parser.add_argument("--presenter", choices=("rofi", "tk"), default="rofi", help="Menu used for trades (default: rofi).")
    parser.add_argument("--gui", action="store_true", help="Open the control panel instead of running headless.")

    client = parser.add_mutually_exclusive_group()
    client.add_argument("--show-trades", action="store_true", help="Ask the running tracker to show the trade menu.")
    client.add_argument("--status", action="store_true", help="Print the running tracker's state.")
    client.add_argument("--hideout", action="store_true", help="Type /hideout into the game.")
    client.add_argument("--kingsmarch", action="store_true", help="Type /kingsmarch into the game.")
    client.add_argument("--cleanup-days", type=int, metavar="DAYS", help="Delete trade history older than DAYS and exit.")
    client.add_argument("--export", metavar="FILE", help="Export trade history to FILE (.csv or .json) and exit.")
    return parser.parse_args(argv)


def _client_command(args):
    for attr, command in CLIENT_COMMANDS.items():
        if getattr(args, attr):
            return command
    return None


def run_client(command: str, socket_path: str) -> int:
    try:
        response = send_command(command, path=socket_path)
    except IPCError as exc:
        print(f"Fehler: {exc}", file=sys.stderr)
        return 1
    print(response.get("message", ""))
    return 0 if response.get("status") == "success" else 1


def run_history_task(args, settings) -> int:
    from database import TradeHistory, export_trades

    history = TradeHistory(settings.db_path)
    try:
        if args.cleanup_days is not None:
            removed = history.cleanup(datetime.timedelta(days=args.cleanup_days))
            print(f"{removed} Einträge gelöscht.")
            return 0
        fmt = "json" if args.export.lower().endswith(".json") else "csv"
        path = export_trades(history, args.export, fmt)
        print(f"{fmt.upper()} exportiert: {path}" if path else "Keine Daten zum Exportieren.")
        return 0
    finally:
        history.close()


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        print(f"Konfigurationsfehler: {exc}", file=sys.stderr)
        return 2

    command = _client_command(args)
    if command:
        return run_client(command, settings.socket_path)
    if args.cleanup_days is not None or args.export:
        return run_history_task(args, settings)

    if args.gui:
        from gui import start_gui
        start_gui(config_path=args.config, debug=args.debug, log_path=args.log_path)
        return 0

    from presenter import make_presenter
    from tracker import TrackerContext, TradeTracker

    try:
        context = TrackerContext.create(debug=args.debug, settings=settings)
        tracker = TradeTracker(context, log_path=args.log_path, presenter=make_presenter(args.presenter))
        tracker.serve()
    except ConfigError as exc:
        log_error("[MAIN] Configuration error", exc)
        print(f"Konfigurationsfehler: {exc}", file=sys.stderr)
        return 2
    except (OSError, IPCError) as exc:
        log_error("[MAIN] Startup failed", exc)
        print(f"Start fehlgeschlagen: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
