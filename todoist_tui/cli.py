"""Command line entry point."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from collections import Counter
from logging.handlers import RotatingFileHandler
from typing import Dict, List, Optional

from . import __version__
from .api import APIError, TodoistClient
from .auth import AuthError, run_oauth_flow
from .config import (
    ConfigError,
    data_dir,
    default_config_path,
    load_config,
    oauth_credentials,
    resolve_token,
    save_config,
    write_template,
)
from .mock import MockService
from .models import Task, is_due_today, is_overdue

logger = logging.getLogger('todoist_tui')

START_VIEWS = ("inbox", "upcoming", "projects", "labels", "calendar")

NO_AUTH_HELP = """No authentication configured.

To get started:
  1. Run 'todoist-tui --init' to create a config file at:
     {path}
  2. Add your API token to the config file
  3. Run 'todoist-tui' again

Get your API token from:
  https://app.todoist.com/app/settings/integrations/developer"""


def setup_logging(log_level: str = "ERROR", log_path: Optional[str] = None) -> str:
    """Attach a rotating file handler; the terminal belongs to the UI."""
    log_path = log_path or os.path.join(data_dir(), "todoist-tui.log")
    os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
    # Always reset handlers so --log-level reliably controls file output.
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.setLevel(logging.DEBUG)
    fh = RotatingFileHandler(log_path, maxBytes=2000000, backupCount=2, encoding='utf-8')
    fh.setLevel(getattr(logging, str(log_level).upper(), logging.ERROR))
    fh.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s'))
    logger.addHandler(fh)
    logger.propagate = False
    return log_path


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="todoist-tui", description="Terminal Todoist client with Vim keybindings")
    ap.add_argument("--config", help="Path to YAML config (default ~/.config/todoist-tui/config.yaml)")
    ap.add_argument("--log-level", default="ERROR", help="File log level (DEBUG, INFO, WARNING, ERROR)")
    ap.add_argument("--init", action="store_true", help="Create a template config file and exit")
    ap.add_argument("--json", action="store_true", help="Print today's and overdue tasks as JSON and exit")
    ap.add_argument("-v", "--version", action="store_true", help="Show version and exit")
    for name in START_VIEWS:
        ap.add_argument(f"--{name}", action="store_true", help=f"Start in the {name} view")
    return ap


def start_view(args: argparse.Namespace) -> Optional[str]:
    for name in ("projects", "upcoming", "calendar", "labels", "inbox"):
        if getattr(args, name):
            return name
    return None


def tasks_summary(tasks: List[Task]) -> Dict[str, object]:
    """Status-bar friendly summary: count, tooltip lines and the highest priority class."""
    counts: Counter = Counter(t.priority for t in tasks)
    top = max([1] + [t.priority for t in tasks])
    return {
        'text': str(len(tasks)),
        'tooltip': "\n".join(f"{t.priority_label}: {t.content}" for t in tasks),
        'class': f"p{top}",
        'tasks': [
            {'name': t.content, 'date': t.due.date if t.due else "", 'priority': t.priority}
            for t in tasks
        ],
        'priority_counts': {str(k): v for k, v in sorted(counts.items())},
        'total': len(tasks),
    }


def due_now(client) -> List[Task]:
    tasks = client.get_tasks_by_filter("today | overdue")
    return [t for t in tasks if not t.checked and (is_due_today(t) or is_overdue(t))]


def obtain_token(cfg) -> Optional[str]:
    """Configured token, else the browser flow when OAuth credentials exist."""
    token = resolve_token(cfg)
    if token:
        return token
    creds = oauth_credentials(cfg)
    if creds is None:
        return None
    token = run_oauth_flow(*creds)
    cfg.auth.access_token = token
    try:
        save_config(cfg)
    except OSError as e:
        print(f"Warning: failed to save token to config: {e}", file=sys.stderr)
    return token


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)

    if args.version:
        print(f"todoist-tui version {__version__}")
        return

    if args.init:
        path = args.config or default_config_path()
        if not write_template(path):
            print(f"Config file already exists: {path}", file=sys.stderr)
            sys.exit(1)
        print(f"Config file created: {path}\n")
        print("Next steps:")
        print("  1. Get your API token from: https://app.todoist.com/app/settings/integrations/developer")
        print("  2. Edit the config file and add your api_token")
        print("  3. Run 'todoist-tui' to start")
        return

    setup_logging(args.log_level)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    view = start_view(args)
    if view:
        cfg.ui.default_view = view

    if os.environ.get("MOCK_FETCH") == "1":
        client = MockService()
    else:
        try:
            token = obtain_token(cfg)
        except AuthError as e:
            print(f"Error: failed to authenticate: {e}", file=sys.stderr)
            sys.exit(1)
        if not token:
            if args.json:
                print("Error: no authentication configured. Run 'todoist-tui --init' first", file=sys.stderr)
            else:
                print(NO_AUTH_HELP.format(path=cfg.path), file=sys.stderr)
            sys.exit(1)
        client = TodoistClient(token)

    if args.json:
        try:
            tasks = due_now(client)
        except (APIError, OSError) as e:
            logger.exception("Fetching tasks for --json failed")
            print(f"Error: failed to fetch tasks: {e}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(tasks_summary(tasks)))
        return

    from .session import Session
    from .ui import run_ui
    logger.info("Starting UI (default view %s)", cfg.ui.default_view or "today")
    session = Session(client, config=cfg, persist_config=save_config)
    run_ui(session)
