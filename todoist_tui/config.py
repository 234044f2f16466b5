"""YAML configuration and token lookup."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import yaml

logger = logging.getLogger('todoist_tui')

APP_NAME = "todoist-tui"
VALID_VIEWS = ("inbox", "today", "upcoming", "projects", "labels", "calendar")
CALENDAR_VIEWS = ("compact", "expanded")

CONFIG_TEMPLATE = """\
# todoist-tui configuration

auth:
  # Personal API token:
  #   https://app.todoist.com/app/settings/integrations/developer
  api_token: ""

  # OAuth app credentials (https://developer.todoist.com/appconsole.html)
  # client_id: ""
  # client_secret: ""

ui:
  # Tab shown on start: inbox, today, upcoming, projects, labels, calendar
  default_view: "today"

  # compact or expanded
  calendar_default_view: "compact"

  # Override single-key bindings, action: key
  # keymap:
  #   complete: "x"
  #   quick_add: "Q"
"""


class ConfigError(ValueError):
    pass


@dataclass
class AuthConfig:
    api_token: str = ""
    client_id: str = ""
    client_secret: str = ""
    access_token: str = ""


@dataclass
class UIConfig:
    vim_mode: bool = True
    default_view: str = ""
    calendar_default_view: str = ""
    keymap: Dict[str, object] = field(default_factory=dict)


@dataclass
class AppConfig:
    auth: AuthConfig = field(default_factory=AuthConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    path: Optional[str] = None

    def to_dict(self) -> dict:
        auth = {k: v for k, v in vars(self.auth).items() if v}
        ui: Dict[str, object] = {'vim_mode': self.ui.vim_mode}
        if self.ui.default_view:
            ui['default_view'] = self.ui.default_view
        if self.ui.calendar_default_view:
            ui['calendar_default_view'] = self.ui.calendar_default_view
        if self.ui.keymap:
            ui['keymap'] = dict(self.ui.keymap)
        return {'auth': auth, 'ui': ui}


def config_dir() -> str:
    return os.path.join(os.path.expanduser("~"), ".config", APP_NAME)


def default_config_path() -> str:
    return os.path.join(config_dir(), "config.yaml")


def data_dir(environ: Optional[Mapping[str, str]] = None) -> str:
    environ = os.environ if environ is None else environ
    base = environ.get("XDG_DATA_HOME") or os.path.join(os.path.expanduser("~"), ".local", "share")
    return os.path.join(base, APP_NAME)


def credentials_path(environ: Optional[Mapping[str, str]] = None) -> str:
    return os.path.join(data_dir(environ), ".credentials")


def load_config(path: Optional[str] = None) -> AppConfig:
    path = path or default_config_path()
    if not os.path.isfile(path):
        return AppConfig(path=path)
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Config: cannot parse {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError("Config: top level must be a mapping.")
    auth_raw = raw.get("auth") or {}
    ui_raw = raw.get("ui") or {}
    if not isinstance(auth_raw, dict) or not isinstance(ui_raw, dict):
        raise ConfigError("Config: 'auth' and 'ui' must be mappings.")

    default_view = str(ui_raw.get("default_view") or "").lower()
    if default_view and default_view not in VALID_VIEWS:
        raise ConfigError(f"Config: unknown default_view {default_view!r} (expected one of {', '.join(VALID_VIEWS)}).")
    cal_view = str(ui_raw.get("calendar_default_view") or "").lower()
    if cal_view and cal_view not in CALENDAR_VIEWS:
        raise ConfigError(f"Config: calendar_default_view must be compact or expanded, got {cal_view!r}.")
    keymap = ui_raw.get("keymap") or {}
    if not isinstance(keymap, dict):
        raise ConfigError("Config: 'ui.keymap' must map actions to keys.")

    return AppConfig(
        auth=AuthConfig(
            api_token=str(auth_raw.get("api_token") or ""),
            client_id=str(auth_raw.get("client_id") or ""),
            client_secret=str(auth_raw.get("client_secret") or ""),
            access_token=str(auth_raw.get("access_token") or ""),
        ),
        ui=UIConfig(
            vim_mode=bool(ui_raw.get("vim_mode", True)),
            default_view=default_view,
            calendar_default_view=cal_view,
            keymap=dict(keymap),
        ),
        path=path,
    )


def save_config(cfg: AppConfig) -> None:
    path = cfg.path or default_config_path()
    os.makedirs(os.path.dirname(path), mode=0o700, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(cfg.to_dict(), f, default_flow_style=False, sort_keys=False)
    os.chmod(path, 0o600)


def write_template(path: Optional[str] = None) -> bool:
    """Create a commented config file; False if one already exists."""
    path = path or default_config_path()
    if os.path.exists(path):
        return False
    os.makedirs(os.path.dirname(path), mode=0o700, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(CONFIG_TEMPLATE)
    os.chmod(path, 0o600)
    return True


def update_default_view(path: str, view_name: str) -> None:
    """Rewrite ``ui.default_view`` in place so comments and layout survive."""
    text = ""
    if os.path.isfile(path):
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    key_re = re.compile(r'^(\s*default_view:\s*).*$', re.MULTILINE)
    ui_re = re.compile(r'^ui:\s*$', re.MULTILINE)
    if key_re.search(text):
        text = key_re.sub(lambda m: f'{m.group(1)}"{view_name}"', text, count=1)
    elif ui_re.search(text):
        text = ui_re.sub(f'ui:\n  default_view: "{view_name}"', text, count=1)
    else:
        text += f'\nui:\n  default_view: "{view_name}"\n'
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


# -----------------------------
# Tokens
# -----------------------------
def load_dotenv_token(directory: Optional[str] = None) -> Optional[str]:
    """Read TODOIST_TOKEN or TOKEN from a .env file if present."""
    path = os.path.join(directory or os.getcwd(), ".env")
    if not os.path.isfile(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            k, v = line.split('=', 1)
            k = k.strip()
            v = v.strip().strip('"').strip("'")
            if k in ("TODOIST_TOKEN", "TOKEN") and v:
                return v
    return None


def load_credentials_token(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    path = credentials_path(environ)
    if not os.path.isfile(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        token = f.read().strip()
    return token or None


def save_credentials_token(token: str, environ: Optional[Mapping[str, str]] = None) -> str:
    token = token.strip()
    if not token:
        raise ValueError("token cannot be empty")
    path = credentials_path(environ)
    os.makedirs(os.path.dirname(path), mode=0o700, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(token)
    os.chmod(path, 0o600)
    return path


def resolve_token(cfg: AppConfig, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Env var, .env, config tokens, then the credentials file."""
    environ = os.environ if environ is None else environ
    token = (environ.get("TODOIST_TOKEN") or "").strip()
    if token:
        return token
    token = load_dotenv_token()
    if token:
        return token
    if cfg.auth.access_token:
        return cfg.auth.access_token
    if cfg.auth.api_token:
        return cfg.auth.api_token
    return load_credentials_token(environ)


def oauth_credentials(cfg: AppConfig, environ: Optional[Mapping[str, str]] = None) -> Optional[tuple]:
    environ = os.environ if environ is None else environ
    client_id = environ.get("TODOIST_CLIENT_ID") or cfg.auth.client_id
    client_secret = environ.get("TODOIST_CLIENT_SECRET") or cfg.auth.client_secret
    if client_id and client_secret:
        return client_id, client_secret
    return None
