"""Load application settings from config/settings.yaml."""

import copy
import os
from pathlib import Path
from typing import Any, Callable, Mapping

import yaml

from llm_dispatch.errors import SettingsError

_DEFAULTS: dict[str, Any] = {
    "llm": {
        "backend": "openai",
        "model": "gpt-4o-mini",
        "embed_model": "text-embedding-3-small",
        # Seconds; applies to every outbound HTTP call and subprocess run
        # unless the request carries its own timeout.
        "timeout": 120.0,
    },
    "host": {
        # Subprocess inference is only allowed when tenant == root_tenant.
        "tenant": "public",
        "root_tenant": "public",
    },
    "credentials": {
        "refresh_skew_sec": 300,
        "journal_path": "data/credential_journal.db",
        "busy_timeout": 5000,
        "lease_ttl_sec": 30,
    },
    "logging": {
        "file": "logs/llm_dispatch.log",
        "level": "INFO",
        "log_to_console": False,
        "max_bytes": 10485760,  # 10 MB
        "backup_count": 3,
    },
}

_DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

_cached: dict[str, Any] | None = None


def _merge_into(base: dict[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Overlay values onto base in place; nested mappings merge, null values keep the default."""
    for key, value in overlay.items():
        current = base.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            _merge_into(current, value)
        elif value is not None:
            base[key] = copy.deepcopy(value)
    return base


def get_default_settings() -> dict[str, Any]:
    """Independent copy of the built-in defaults."""
    return copy.deepcopy(_DEFAULTS)


def get_setting(settings: Mapping[str, Any], path: str, default: Any = None) -> Any:
    """Nested value by dot path (e.g. 'llm.timeout'), or default when any segment is missing."""
    node: Any = settings
    for part in path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node


def reload_settings() -> None:
    """Forget the cached settings so the next load_settings() re-reads the file."""
    global _cached
    _cached = None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise SettingsError(path, e.strerror or str(e)) from e
    except yaml.YAMLError as e:
        raise SettingsError(path, f"invalid YAML ({e})") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError(path, f"expected a mapping at the top level, got {type(data).__name__}")
    return data


def load_settings(config_dir: Path | None = None) -> dict[str, Any]:
    """Defaults overlaid with config_dir/settings.yaml, cached until reload_settings().

    A missing file means defaults. A file that cannot be read or parsed raises
    SettingsError rather than silently running on defaults.
    """
    global _cached
    if _cached is None:
        path = (config_dir or _DEFAULT_CONFIG_DIR) / "settings.yaml"
        settings = get_default_settings()
        if path.exists():
            _merge_into(settings, _read_yaml(path))
        _cached = settings
    return _cached


_ENV_OVERRIDES = {
    "LLM_DISPATCH_BACKEND": "backend",
    "LLM_DISPATCH_MODEL": "model",
    "LLM_DISPATCH_BASE_URL": "base_url",
}


def llm_block(
    settings: dict[str, Any],
    secrets_getter: Callable[[str], str | None],
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return the active backend block with env overrides applied and secrets resolved.

    Keys ending in ``_secret`` name a secret; the value is looked up with
    secrets_getter and stored under the key without the suffix (api_key_secret
    -> api_key) unless a literal value is already present. Alternate
    configurations are resolved the same way.
    """
    env = os.environ if environ is None else environ
    block = copy.deepcopy(dict(settings.get("llm") or {}))
    for var, key in _ENV_OVERRIDES.items():
        if env.get(var):
            block[key] = env[var]
    _resolve_secret_refs(block, secrets_getter)
    for alt in block.get("alternates") or []:
        if isinstance(alt, dict):
            _resolve_secret_refs(alt, secrets_getter)
    return block


def _resolve_secret_refs(
    block: dict[str, Any], secrets_getter: Callable[[str], str | None]
) -> None:
    for key in [k for k in block if k.endswith("_secret")]:
        name = block.pop(key)
        target = key[: -len("_secret")]
        if block.get(target) or not name:
            continue
        value = secrets_getter(str(name))
        if value:
            block[target] = value
