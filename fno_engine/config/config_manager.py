"""ConfigManager — 3-layer TOML config with deep merge and dot-notation access."""

from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

DEFAULT_BASE_PATH = Path(__file__).parent / "engine_base.toml"


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base (last wins). Returns new dict."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _get_nested(d: dict, dotted_key: str, default: Any = None) -> Any:
    """Get a value from a nested dict using dot notation."""
    current = d
    for part in dotted_key.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return default
    return current


def _set_nested(d: dict, dotted_key: str, value: Any) -> None:
    """Set a value in a nested dict using dot notation."""
    parts = dotted_key.split(".")
    current = d
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


class ConfigManager:
    """Singleton config manager.

    Merge order (last wins): base → profiles/profile_<name>.toml → local override file
    """

    _instance: ConfigManager | None = None

    def __new__(cls) -> ConfigManager:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._config: dict[str, Any] = {}
        self._base_path: Path | None = None
        self._profile: str | None = None
        self._local_path: Path | None = None
        self._overrides: dict[str, Any] = {}
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Reset singleton (for testing)."""
        cls._instance = None

    def load(
        self,
        base_path: str | Path | None = None,
        profile: str | None = None,
        local_path: str | Path | None = None,
    ) -> None:
        """Load and merge config layers.

        Args:
            base_path: Path to engine_base.toml (defaults to the packaged file)
            profile: Profile name (e.g. 'paper') — loads profiles/profile_{name}.toml
            local_path: Optional site override; defaults to local.toml beside the base
        """
        self._base_path = Path(base_path) if base_path is not None else DEFAULT_BASE_PATH
        self._profile = profile
        self._local_path = Path(local_path) if local_path is not None else None

        # Layer 1: Base
        self._config = self._load_toml(self._base_path)

        # Layer 2: Profile override
        if profile:
            profile_path = self._base_path.parent / "profiles" / f"profile_{profile}.toml"
            if not profile_path.exists():
                raise FileNotFoundError(f"Config profile not found: {profile_path}")
            self._config = _deep_merge(self._config, self._load_toml(profile_path))

        # Layer 3: Local override
        local = self._local_path or self._base_path.parent / "local.toml"
        if local.exists():
            self._config = _deep_merge(self._config, self._load_toml(local))

        for key, value in self._overrides.items():
            _set_nested(self._config, key, value)

    def _load_toml(self, path: Path) -> dict[str, Any]:
        with open(path, "rb") as f:
            return tomllib.load(f)

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Get config value using dot notation. E.g. get('risk.max_positions')."""
        return _get_nested(self._config, dotted_key, default)

    def set(self, dotted_key: str, value: Any) -> None:
        """Override a single value; survives reload()."""
        self._overrides[dotted_key] = value
        _set_nested(self._config, dotted_key, value)

    def reload(self) -> None:
        """Hot-reload config. Only allowed in paper trading."""
        if not self.get("broker.enable_paper_trading", True):
            raise RuntimeError("Hot-reload is disabled in live trading.")
        if self._base_path is not None:
            self.load(self._base_path, self._profile, self._local_path)

    @property
    def profile(self) -> str | None:
        return self._profile

    @property
    def raw(self) -> dict[str, Any]:
        """Access the raw merged config dict."""
        return self._config
