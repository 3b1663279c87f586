"""
Typed configuration model with precedence-based loader.

Precedence (lowest to highest):
    defaults < config file (YAML) < env vars < explicit overrides < per-client overrides
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Awaitable, Callable

import yaml


# A custom verifier receives (plugin_name, serialized_code, signature) and
# returns (or resolves to) a bool.
CustomVerifier = Callable[[str, str, str], "bool | Awaitable[bool]"]


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ApiConfig:
    base_url: str = "https://agenthustle.ai"
    chat_path: str = "/api/chat"
    api_key_env: str = "HUSTLE_API_KEY"
    vault_id: str = ""
    model: str = ""
    timeout_seconds: float = 180.0
    user_agent: str = "HustleIncognito-SDK-py/0.2.0"

    @property
    def chat_url(self) -> str:
        return self.base_url.rstrip("/") + self.chat_path

    def resolve_api_key(self) -> str:
        return os.environ.get(self.api_key_env, "") if self.api_key_env else ""


@dataclass
class StreamConfig:
    max_tool_rounds: int = 5
    tool_timeout_seconds: float = 0.0
    validate_tool_arguments: bool = True


@dataclass
class SecurityConfig:
    # NOTE: skip_verification defaults to True for compatibility with unsigned
    # plugins.  Set it to False to enforce verification.
    skip_verification: bool = True
    allow_trusted_builtins: bool = True
    trusted_builtins: list[str] | None = None
    algorithm: str = "hmac"
    public_key: str = ""
    hmac_key: str = ""
    custom_verifier: CustomVerifier | None = field(default=None, repr=False)


@dataclass
class PluginsConfig:
    enabled: bool = False
    group: str = "hustle.plugins"
    allow_distributions: list[str] = field(default_factory=list)
    allow_plugins: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------

@dataclass
class ClientConfig:
    api: ApiConfig = field(default_factory=ApiConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    plugins: PluginsConfig = field(default_factory=PluginsConfig)
    debug: bool = False
    profiles: dict[str, dict[str, Any]] = field(default_factory=dict)

    # ----- per-client overrides (applied last) ----
    _overrides: dict[str, Any] = field(default_factory=dict, repr=False)

    def set_override(self, dotpath: str, value: Any) -> None:
        """Set a per-client override using dot notation (e.g. 'stream.max_tool_rounds')."""
        self._overrides[dotpath] = value
        _apply_dotpath(self, dotpath, value)

    def get_override(self, dotpath: str) -> Any | None:
        return self._overrides.get(dotpath)

    def to_dict(self) -> dict:
        d = asdict(self)
        d.pop("_overrides", None)
        d["security"].pop("custom_verifier", None)
        return d


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _apply_dotpath(obj: Any, dotpath: str, value: Any) -> None:
    """Walk obj via dotpath and set the final attribute."""
    parts = dotpath.split(".")
    for part in parts[:-1]:
        obj = getattr(obj, part)
    if not hasattr(obj, parts[-1]):
        raise AttributeError(f"Unknown config key: {dotpath}")
    setattr(obj, parts[-1], value)


def _deep_merge(base: dict, overlay: dict) -> dict:
    """Recursively merge overlay into base, returning a new dict."""
    merged = dict(base)
    for k, v in overlay.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _coerce(value: str, target_type: type) -> Any:
    """Coerce a string env value to the target type."""
    if target_type is bool:
        return value.lower() in ("1", "true", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)
    if target_type is list:
        return [s.strip() for s in value.split(",") if s.strip()]
    return value


def _build_section(cls: type, raw: dict) -> Any:
    """Build a dataclass section from a raw dict, ignoring unknown keys."""
    valid_fields = {f.name for f in fields(cls)}
    filtered = {k: v for k, v in raw.items() if k in valid_fields}
    return cls(**filtered)


# ---------------------------------------------------------------------------
# ENV var mapping
# ---------------------------------------------------------------------------

_ENV_MAP: dict[str, tuple[str, type]] = {
    "HUSTLE_API_URL":                   ("api.base_url", str),
    "HUSTLE_API_CHAT_PATH":             ("api.chat_path", str),
    "HUSTLE_API_KEY_ENV":               ("api.api_key_env", str),
    "HUSTLE_VAULT_ID":                  ("api.vault_id", str),
    "HUSTLE_MODEL":                     ("api.model", str),
    "HUSTLE_TIMEOUT":                   ("api.timeout_seconds", float),
    "HUSTLE_MAX_TOOL_ROUNDS":           ("stream.max_tool_rounds", int),
    "HUSTLE_TOOL_TIMEOUT":              ("stream.tool_timeout_seconds", float),
    "HUSTLE_VALIDATE_TOOL_ARGS":        ("stream.validate_tool_arguments", bool),
    "HUSTLE_SECURITY_SKIP_VERIFY":      ("security.skip_verification", bool),
    "HUSTLE_SECURITY_ALLOW_BUILTINS":   ("security.allow_trusted_builtins", bool),
    "HUSTLE_SECURITY_TRUSTED_BUILTINS": ("security.trusted_builtins", list),
    "HUSTLE_SECURITY_ALGORITHM":        ("security.algorithm", str),
    "HUSTLE_SECURITY_PUBLIC_KEY":       ("security.public_key", str),
    "HUSTLE_SECURITY_HMAC_KEY":         ("security.hmac_key", str),
    "HUSTLE_PLUGINS_ENABLED":           ("plugins.enabled", bool),
    "HUSTLE_PLUGINS_GROUP":             ("plugins.group", str),
    "HUSTLE_DEBUG":                     ("debug", bool),
}


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    overrides: dict[str, Any] | None = None,
) -> ClientConfig:
    """
    Build a ClientConfig by layering sources in precedence order:

        defaults  <  config file  <  env vars  <  explicit overrides

    Parameters
    ----------
    config_path : path to YAML config file (optional)
    profile : name of a profile to apply from the config file
    overrides : dict of dotpath -> value overrides
    """
    raw: dict[str, Any] = {}

    # --- 1. Config file ---
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.is_file():
            with p.open("r", encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            raw = _deep_merge(raw, file_data)

    # --- 2. Profile overlay ---
    if profile and "profiles" in raw:
        profile_data = raw.get("profiles", {}).get(profile, {})
        if profile_data:
            raw = _deep_merge(raw, profile_data)

    # --- Build sections from raw ---
    cfg = ClientConfig(
        api=_build_section(ApiConfig, raw.get("api", {})),
        stream=_build_section(StreamConfig, raw.get("stream", {})),
        security=_build_section(SecurityConfig, raw.get("security", {})),
        plugins=_build_section(PluginsConfig, raw.get("plugins", {})),
        debug=bool(raw.get("debug", False)),
        profiles=raw.get("profiles", {}),
    )

    # --- 3. Env var overrides ---
    for env_var, (dotpath, target_type) in _ENV_MAP.items():
        val = os.environ.get(env_var)
        if val is not None:
            _apply_dotpath(cfg, dotpath, _coerce(val, target_type))

    # --- 4. Explicit overrides ---
    if overrides:
        for dotpath, value in overrides.items():
            _apply_dotpath(cfg, dotpath, value)

    return cfg
