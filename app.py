"""
Battery Guard - Telegram alerts when the battery runs down
Console entry point with optional web dashboard
"""
import argparse
import logging
import sys
import threading
import time
import webbrowser
from typing import List, Optional

from battery_source import BatteryFeed, create_source
from config_manager import BATTERY_SOURCES, ConfigManager
from logging_setup import configure_logging
from monitor import BatteryGuard
from notifications import TelegramNotifier
from thresholds import format_thresholds
from wake_lock import DisabledWakeLock, SystemWakeLock, WakeLockManager

logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  start | stop | toggle     arm or disarm monitoring
  test                      send a test message to Telegram
  status                    show battery and monitoring state
  log                       show alert log (newest first)
  thresholds                show the alert thresholds
  set <field> <value>       change a setting (e.g. set step 10)
  help                      show this help
  quit                      exit"""


def parse_percent_arg(value: str) -> int:
    s = value.strip()
    if s.endswith("%"):
        s = s[:-1]
    if not s.isdigit():
        raise argparse.ArgumentTypeError("Percentage must be an integer like 25 or 25%")
    n = int(s)
    if n < 1 or n > 100:
        raise argparse.ArgumentTypeError("Percentage must be between 1 and 100")
    return n


def format_status(guard: BatteryGuard) -> str:
    status = guard.status()
    battery = status['battery']
    if battery is None:
        battery_line = "Battery: no reading yet"
    else:
        charge = "Charging" if battery['charging'] else "On battery"
        battery_line = f"{battery['device'].capitalize()} Battery: {battery['percentage']}% | {charge}"

    line = f"[{status['state'].upper()}] {battery_line} | Thresholds: {format_thresholds(status['thresholds'])}"
    if status['fired_thresholds']:
        line += f" | Fired: {format_thresholds(status['fired_thresholds'])}"
    if status['armed'] and not status['wake_lock']['held']:
        line += " | Keep-awake unavailable"
    return line


def format_log(guard: BatteryGuard) -> str:
    entries = guard.event_log.snapshot()
    if not entries:
        return "Log is empty"
    lines = [f"Event log {len(entries)}/{guard.event_log.capacity}:"]
    for entry in entries:
        mark = "OK" if entry.status.value == 'sent' else "FAIL"
        lines.append(f"  {entry.timestamp.strftime('%H:%M:%S')} {entry.level_percent:>3}% {entry.message} [{mark}]")
    return '\n'.join(lines)


def handle_command(guard: BatteryGuard, user_input: str) -> Optional[str]:
    """Run one console command, returns the text to print or None to quit"""
    parts = user_input.strip().split()
    if not parts:
        return ""

    command = parts[0].lower()

    if command in ("quit", "exit", "q"):
        return None
    if command == "start":
        guard.start()
        return format_status(guard)
    if command == "stop":
        guard.stop()
        return format_status(guard)
    if command == "toggle":
        guard.toggle()
        return format_status(guard)
    if command == "test":
        if guard.send_test_alert():
            return "Test sent! Check Telegram."
        return "Test failed: check the bot token and chat id."
    if command == "status":
        return format_status(guard)
    if command == "log":
        return format_log(guard)
    if command == "thresholds":
        return format_thresholds(guard.thresholds)
    if command == "help":
        return HELP_TEXT
    if command == "set":
        if len(parts) < 3:
            return "Usage: set <field> <value>  (e.g. set start_threshold 30)"
        field, value = parts[1], ' '.join(parts[2:])
        try:
            guard.update_settings(**{field: value})
        except ValueError as e:
            return f"Error: {e}"
        output = f"{field} updated. Thresholds: {format_thresholds(guard.thresholds)}"
        issues = guard.config_manager.validate()
        if issues:
            output += "\nWarning: " + "; ".join(issues)
        return output

    return "Unknown command. Type 'help' for the list of commands."


def run_console(guard: BatteryGuard, stop_event: threading.Event):
    """Read commands from stdin until quit or EOF"""
    while not stop_event.is_set():
        try:
            user_input = input()
        except EOFError:
            break
        output = handle_command(guard, user_input)
        if output is None:
            break
        if output:
            print(output)
    stop_event.set()


def start_web_server(guard: BatteryGuard, host: str = '127.0.0.1', port: int = 5000,
                     open_browser: bool = True):
    """Start the dashboard in a separate thread"""
    from dashboard import create_flask_app

    app, socketio = create_flask_app(guard)

    def run_app():
        socketio.run(app, host=host, port=port, debug=False, allow_unsafe_werkzeug=True)

    web_thread = threading.Thread(target=run_app, name='dashboard', daemon=True)
    web_thread.start()

    # Give the server a moment to start
    time.sleep(1)
    if open_browser:
        webbrowser.open(f'http://{host}:{port}')

    return web_thread


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Battery monitor with Telegram threshold alerts")
    parser.add_argument("--config", help="path to the settings JSON file")
    parser.add_argument("--source", choices=BATTERY_SOURCES, help="battery to watch (default from settings)")
    parser.add_argument("--interval", type=int, help="poll interval seconds")
    parser.add_argument("-s", "--start-threshold", type=parse_percent_arg, help="first alert threshold (e.g. 25%%)")
    parser.add_argument("--step", type=parse_percent_arg, help="percent between alert thresholds")
    parser.add_argument("-f", "--floor-threshold", type=parse_percent_arg, help="last alert threshold (e.g. 1%%)")
    parser.add_argument("--arm", action="store_true", help="start monitoring immediately")
    parser.add_argument("--test", action="store_true", help="send a test message and exit")
    parser.add_argument("--web", action="store_true", help="start web dashboard")
    parser.add_argument("--host", default="127.0.0.1", help="dashboard host")
    parser.add_argument("--port", type=int, default=5000, help="dashboard port")
    parser.add_argument("--no-browser", action="store_true", help="do not open the dashboard in a browser")
    parser.add_argument("--no-wake-lock", action="store_true", help="do not keep the system awake while armed")
    parser.add_argument("--log-level", default="INFO", help="logging level")
    parser.add_argument("--json-logs", action="store_true", help="log as JSON lines")
    return parser


def main(argv: List[str] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, json_format=args.json_logs)

    config_manager = ConfigManager(args.config)
    provider = DisabledWakeLock() if args.no_wake_lock else SystemWakeLock()
    guard = BatteryGuard(config_manager, notifier=TelegramNotifier(), wake_lock=WakeLockManager(provider))

    overrides = {
        'battery_source': args.source,
        'poll_interval_seconds': args.interval,
        'start_threshold': args.start_threshold,
        'step': args.step,
        'floor_threshold': args.floor_threshold,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        guard.update_settings(**overrides)

    if args.test:
        success = guard.send_test_alert()
        print("Test sent! Check Telegram." if success else "Test failed: check the bot token and chat id.")
        return 0 if success else 1

    for issue in config_manager.validate():
        print(f"Warning: {issue}")

    config = config_manager.config
    feed = BatteryFeed(create_source(config.battery_source), config.poll_interval_seconds)
    guard.attach(feed)

    if args.web:
        start_web_server(guard, args.host, args.port, open_browser=not args.no_browser)
        print(f"Web interface started at http://{args.host}:{args.port}")

    if args.arm:
        guard.start()

    print(
        f"Battery Guard for {config.device_label} | Thresholds: {format_thresholds(guard.thresholds)} | "
        f"Poll every {config.poll_interval_seconds}s"
    )
    print("Type 'start' to arm monitoring, 'help' for commands, or 'quit' to exit.")

    stop_event = threading.Event()
    feed.start()
    logger.info("Polling %s battery every %ss", config.battery_source, config.poll_interval_seconds)
    try:
        run_console(guard, stop_event)
    except KeyboardInterrupt:
        pass
    finally:
        feed.stop()
        guard.close()
        print("Stopping monitor...")

    return 0


if __name__ == "__main__":
    sys.exit(main())
