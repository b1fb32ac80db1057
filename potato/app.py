"""Potato CLI: main application entry point."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


def _configure_logging(level: str, to_stderr: bool) -> Path:
    log_dir = Path.home() / ".potato" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "potato.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    # The TUI owns the terminal; only headless runs log to stderr.
    if to_stderr:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        stream_handler.setLevel(logging.WARNING)
        root.addHandler(stream_handler)
    return log_file


def _load_config(args):
    from potato.engine.config import EngineConfig, parse_mode
    from potato.engine.yaml_config import discover_config_path, load_yaml_config

    logger = logging.getLogger(__name__)
    config = EngineConfig.from_env()

    config_path = Path(args.config) if args.config else discover_config_path(Path.cwd())
    if config_path is not None:
        logger.info("Using config: %s (explicit=%s)", config_path, bool(args.config))
        config = load_yaml_config(config_path, base=config).engine
    else:
        logger.info("No config file found; using environment and defaults")

    if args.mode:
        config.mode = parse_mode(args.mode)
    if args.vault:
        config.vault_root = str(Path(args.vault).expanduser().resolve())
    if args.project:
        config.project_dir = str(Path(args.project).expanduser().resolve())
    if args.model:
        config.default_model = args.model
    if not config.vault_root:
        config.vault_root = str(Path.cwd())
    return config


def _print_history(history) -> None:
    from rich.console import Console
    from rich.table import Table

    console = Console()
    rows = history.list()
    if not rows:
        console.print("No saved chats.")
        return
    table = Table("ID", "Title", "Mode", "Messages", "Updated")
    for row in rows:
        updated = row.updated_at.strftime("%Y-%m-%d %H:%M") if row.updated_at else ""
        table.add_row(row.local_id, row.title, row.mode, str(row.message_count), updated)
    console.print(table)


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="potato",
        description="Potato: chat with an AI agent over your notes vault",
    )
    parser.add_argument(
        "--list", action="store_true",
        help="List saved chats and exit (no TUI)",
    )
    parser.add_argument(
        "--resume", metavar="ID",
        help="Resume a saved chat by its id",
    )
    parser.add_argument(
        "--mode", choices=["vault", "project"],
        help="Capability mode (default: vault)",
    )
    parser.add_argument(
        "--vault", metavar="PATH",
        help="Vault root directory (default: current directory)",
    )
    parser.add_argument(
        "--project", metavar="PATH",
        help="Source directory used in project mode",
    )
    parser.add_argument(
        "--model", metavar="MODEL",
        help="Model passed to the agent backend",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: .potato/potato.yaml if present)",
    )
    parser.add_argument(
        "--headless", metavar="PROMPT",
        help="Run a single prompt on the console instead of the TUI",
    )
    parser.add_argument(
        "--replay", metavar="FILE",
        help="Replay recorded agent responses instead of calling the backend",
    )
    args = parser.parse_args()

    log_file = _configure_logging(
        os.getenv("POTATO_LOG_LEVEL", "INFO"), to_stderr=bool(args.headless),
    )
    logger = logging.getLogger(__name__)
    logger.info("Starting potato cwd=%s log=%s", Path.cwd(), log_file)

    from potato.shared.services.history import HistoryStore

    config = _load_config(args)
    logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    history = HistoryStore(limit=config.history_limit, title_max_chars=config.title_max_chars)

    if args.list:
        _print_history(history)
        sys.exit(0)

    from potato.adapters.event_bus import EventBus
    from potato.adapters.replay import ReplayTransport
    from potato.engine.controller import TurnController
    from potato.engine.transport import ClaudeSdkTransport

    session = None
    if args.resume:
        session = history.load(args.resume)
        if session is None:
            print(f"No saved chat with id {args.resume}", file=sys.stderr)
            sys.exit(1)
        if args.mode:
            session.mode = config.mode

    if args.replay:
        transport = ReplayTransport.from_file(args.replay)
    else:
        transport = ClaudeSdkTransport(ask_tools=config.ask_tools)

    if args.headless:
        from potato.headless import print_notice, run_headless

        controller = TurnController(
            config, transport, history=history,
            event_callback=print_notice, session=session,
        )
        sys.exit(asyncio.run(run_headless(controller, args.headless)))

    # TUI mode
    from potato.tui.app import PotatoApp

    bus = EventBus()
    controller = TurnController(
        config, transport, history=history,
        event_callback=bus.make_callback(), session=session,
    )
    app = PotatoApp(controller, bus)
    app.run()


if __name__ == "__main__":
    main()
