"""
Settings for a termstart session.

Values start from the dataclass defaults and are overlaid, in order, by the
user file ``~/.config/termstart/config.toml``, the first of ``termstart.toml``
or ``.termstartrc`` found in the working directory, a file named on the
command line, ``TERMSTART_<FIELD>`` environment variables, and finally
keyword overrides passed to ``load_config``. Later layers win. Keys that do
not name a field are skipped at every layer.
"""
import os
import tomli
import tomli_w
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field, asdict, fields

ENV_PREFIX = "TERMSTART_"
LOCAL_FILES = ("termstart.toml", ".termstartrc")


def user_config_path() -> Path:
    return Path.home() / ".config" / "termstart" / "config.toml"


def config_files(explicit: Optional[Path] = None) -> List[Path]:
    """Existing config files, lowest precedence first."""
    found = []
    if user_config_path().exists():
        found.append(user_config_path())

    local = next((Path.cwd() / name for name in LOCAL_FILES
                  if (Path.cwd() / name).exists()), None)
    if local is not None:
        found.append(local)

    if explicit is not None and explicit.exists():
        found.append(explicit)
    return found


def read_toml(path: Path) -> Dict[str, Any]:
    with open(path, "rb") as f:
        return tomli.load(f)


def coerce(current: Any, raw: str) -> Any:
    """Convert an environment string to the type of the field it replaces."""
    if isinstance(current, bool):
        return raw.lower() in ("true", "1", "yes")
    if isinstance(current, int):
        return int(raw)
    return raw


@dataclass
class TermstartConfig:
    """Connection, cache and display settings."""

    store_url: str = field(default="http://localhost:54321")
    api_key: str = field(default="")

    timeout: int = field(default=10)  # seconds per request
    user_agent: str = field(default="termstart/0.1")

    cache_ttl: int = field(default=300)
    session_file: str = field(default="~/.config/termstart/session.json")

    theme: str = field(default="dark")  # dark or light
    log_level: str = field(default="WARNING")

    @classmethod
    def load(cls, config_file: Optional[Path] = None) -> "TermstartConfig":
        """
        Build a config from the file and environment layers.

        Args:
            config_file: Extra TOML file applied after the discovered ones;
                silently skipped when it does not exist
        """
        config = cls()
        for path in config_files(config_file):
            config.update(read_toml(path))
        config.update_from_env(os.environ)
        config.session_file = os.path.expanduser(os.path.expandvars(config.session_file))
        return config

    @classmethod
    def field_names(cls):
        return {f.name for f in fields(cls)}

    def update(self, values: Dict[str, Any]):
        known = self.field_names()
        for key, value in values.items():
            if key in known:
                setattr(self, key, value)

    def update_from_env(self, environ):
        known = self.field_names()
        for key, raw in environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            name = key[len(ENV_PREFIX):].lower()
            if name in known:
                setattr(self, name, coerce(getattr(self, name), raw))

    def save(self, path: Optional[Path] = None):
        """Write every field as TOML, to the user config file by default."""
        path = path or user_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            tomli_w.dump(asdict(self), f)

    def rest_url(self, resource: str) -> str:
        """Endpoint for a REST resource, e.g. ``bookmarks``."""
        return f"{self.store_url.rstrip('/')}/rest/v1/{resource}"

    def auth_url(self, endpoint: str) -> str:
        """Endpoint on the auth service, e.g. ``signup``."""
        return f"{self.store_url.rstrip('/')}/auth/v1/{endpoint}"


def load_config(config_file: Optional[Path] = None, **overrides) -> TermstartConfig:
    """Load the layered config, then apply keyword overrides that are not None."""
    config = TermstartConfig.load(config_file)
    config.update({key: value for key, value in overrides.items() if value is not None})
    return config
