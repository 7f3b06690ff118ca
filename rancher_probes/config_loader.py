"""
Loading of probe defaults.

Defaults are layered: built-in values, then an optional YAML file, then environment
variables. Command line flags are applied on top by each command.
"""
import argparse
import os
import re
import sys
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

CONFIG_ENV_VAR = "RANCHER_PROBES_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.config/rancher-probes.yaml")

DEFAULT_SETTINGS: Dict[str, Any] = {
    "namespace": "cattle-system",
    "port": 6666,
    "port_hex": None,
    "kubeconfig": None,
}

PORT_HEX_RE = re.compile(r"^[0-9A-Fa-f]{4}$")


class SettingsError(ValueError):
    """A configured value cannot be used."""


@dataclass(frozen=True)
class ProbeSettings:
    namespace: str
    port: int
    port_hex: str
    kubeconfig: Optional[str]


def load_yaml(file_path: Path) -> Dict[str, Any]:
    """Load a YAML file."""
    if not file_path.exists():
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def deep_merge_dict(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay dict into base dict."""
    result = deepcopy(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def port_to_hex(port: int) -> str:
    """Format a port the way /proc/net/tcp does (6666 -> "1A0A")."""
    if not 0 < port < 65536:
        raise ValueError(f"Port out of range: {port}")
    return f"{port:04X}"


def port_number(value: str) -> int:
    """argparse type for a TCP port."""
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port: {value!r}")
    if not 0 < port < 65536:
        raise argparse.ArgumentTypeError(f"port out of range (1-65535): {port}")
    return port


def _find_config_file(config_path: Optional[str], environ: Mapping[str, str]) -> Optional[Path]:
    if config_path:
        return Path(config_path).expanduser()
    if environ.get(CONFIG_ENV_VAR):
        return Path(environ[CONFIG_ENV_VAR]).expanduser()
    default_path = DEFAULT_CONFIG_PATH.expanduser()
    return default_path if default_path.exists() else None


def _settings_from_env(environ: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if environ.get("NAMESPACE"):
        overrides["namespace"] = environ["NAMESPACE"]
    if environ.get("PORT_TO_CHECK"):
        overrides["port"] = environ["PORT_TO_CHECK"]
    if environ.get("PORT_HEX"):
        overrides["port_hex"] = environ["PORT_HEX"]
    if environ.get("KUBECONFIG"):
        overrides["kubeconfig"] = environ["KUBECONFIG"]
    return overrides


def _validated_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise SettingsError(f"Invalid port {value!r}: expected a number between 1 and 65535")
    if not 0 < port < 65536:
        raise SettingsError(f"Invalid port {port}: expected a number between 1 and 65535")
    return port


def load_settings(
    config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> ProbeSettings:
    """
    Build the effective settings.

    Args:
        config_path: Explicit YAML file; falls back to $RANCHER_PROBES_CONFIG and then to
            ~/.config/rancher-probes.yaml when present.
        environ: Environment mapping (defaults to os.environ)

    Returns:
        ProbeSettings with every layer applied

    Raises:
        SettingsError: If the port or its hex form is invalid
    """
    environ = os.environ if environ is None else environ

    merged = deepcopy(DEFAULT_SETTINGS)
    config_file = _find_config_file(config_path, environ)
    if config_file is not None:
        merged = deep_merge_dict(merged, load_yaml(config_file))
    merged = deep_merge_dict(merged, _settings_from_env(environ))

    port = _validated_port(merged["port"])
    port_hex = str(merged["port_hex"] or port_to_hex(port)).upper()
    if not PORT_HEX_RE.match(port_hex):
        raise SettingsError(f"Invalid port hex {port_hex!r}: expected 4 hex digits, e.g. 1A0A")

    return ProbeSettings(
        namespace=merged["namespace"],
        port=port,
        port_hex=port_hex,
        kubeconfig=merged["kubeconfig"],
    )


def load_settings_or_exit() -> ProbeSettings:
    """load_settings() for command entry points: prints the error and exits 1."""
    try:
        return load_settings()
    except SettingsError as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        sys.exit(1)


def resolve_kubeconfig(
    candidate: Optional[str], environ: Optional[Mapping[str, str]] = None
) -> Optional[str]:
    """
    Pick the kubeconfig file to use.

    Returns the candidate when it exists, otherwise $KUBECONFIG_ENV when set. A path list
    such as "a.yaml:b.yaml" is returned as is when every file exists. Otherwise the list
    resolves to None, like an unset candidate. None means "use the client's default config",
    which reads $KUBECONFIG itself.

    Raises:
        FileNotFoundError: If a single candidate is missing and no fallback is available
    """
    environ = os.environ if environ is None else environ

    if candidate is not None and os.pathsep in candidate:
        paths = [Path(part).expanduser() for part in candidate.split(os.pathsep) if part]
        if paths and all(path.is_file() for path in paths):
            return os.pathsep.join(str(path) for path in paths)
        candidate = None

    if candidate is None:
        return environ.get("KUBECONFIG_ENV") or None
    if Path(candidate).expanduser().is_file():
        return str(Path(candidate).expanduser())
    if environ.get("KUBECONFIG_ENV"):
        return environ["KUBECONFIG_ENV"]
    raise FileNotFoundError(
        f"Kubeconfig file '{candidate}' not found. Place it in the current directory or set "
        f"KUBECONFIG_ENV=/path/to/config.yaml"
    )
