"""wpverify Configuration — project-level .wpverifyrc.yml support.

Loads configuration from .wpverifyrc.yml (or .wpverifyrc.yaml,
.wpverifyrc.json) found by walking up from the working directory.

Example .wpverifyrc.yml:
    timeout_ms: 20000          # per-VC solver timeout
    max_unfold_depth: 8        # formula inlining / call unfolding bound
    exists_mode: native        # or "approximate"
    parallel: true
    parallel_workers: 4
    format: pretty             # "pretty", "summary", "json"
    functions:                 # verify only these
      - sum
    axioms:
      fib:
        - universal-ensures
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

from wpverify.encoder import DEFAULT_MAX_DEPTH, EXISTS_MODES, EXISTS_NATIVE
from wpverify.errors import ConfigError, config_error
from wpverify.solver import DEFAULT_TIMEOUT_MS

FORMATS = ("pretty", "summary", "json")


@dataclass
class VerifierConfig:
    """Settings for one verification run."""
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    max_unfold_depth: int = DEFAULT_MAX_DEPTH
    exists_mode: str = EXISTS_NATIVE
    # Features
    parallel: bool = False
    parallel_workers: int = 0  # 0 = auto (cpu_count)
    # Output
    format: str = "pretty"
    # Restrict to these functions (empty = all)
    functions: List[str] = field(default_factory=list)
    # function name -> axiom supplier names
    axioms: Dict[str, List[str]] = field(default_factory=dict)

    def selects(self, function_name: str) -> bool:
        return not self.functions or function_name in self.functions


# ---------------------------------------------------------------------------
# Config file names (in priority order)
# ---------------------------------------------------------------------------

_CONFIG_FILES = [
    ".wpverifyrc.yml",
    ".wpverifyrc.yaml",
    ".wpverifyrc.json",
    "wpverify.config.yml",
    "wpverify.config.json",
]


def find_config(start_dir: str = ".") -> Optional[str]:
    """Find the nearest config file by walking up from start_dir."""
    current = os.path.abspath(start_dir)
    while True:
        for name in _CONFIG_FILES:
            path = os.path.join(current, name)
            if os.path.isfile(path):
                return path
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return None


def load_config(path: Optional[str] = None, start_dir: str = ".") -> VerifierConfig:
    """Load configuration from a file.

    If no path is given, searches for a config file starting from start_dir.
    If no config file is found, returns defaults.
    """
    if path is None:
        path = find_config(start_dir)

    if path is None:
        return VerifierConfig()

    try:
        with open(path, "r") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(config_error(f"Cannot read config file {path}: {e}")) from e

    try:
        if path.endswith(".json"):
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(config_error(f"Malformed config file {path}: {e}")) from e

    if data is None:
        return VerifierConfig()
    if not isinstance(data, dict):
        raise ConfigError(config_error(f"Config file {path} must hold a mapping"))
    return dict_to_config(data)


def dict_to_config(data: Dict[str, Any]) -> VerifierConfig:
    """Convert a parsed dict to VerifierConfig."""
    config = VerifierConfig()

    if "timeout_ms" in data:
        config.timeout_ms = _non_negative_int(data, "timeout_ms")
    if "max_unfold_depth" in data:
        config.max_unfold_depth = _non_negative_int(data, "max_unfold_depth")
    if "exists_mode" in data:
        config.exists_mode = str(data["exists_mode"])
        if config.exists_mode not in EXISTS_MODES:
            raise ConfigError(config_error(
                f"exists_mode must be one of {', '.join(EXISTS_MODES)}", key="exists_mode"))
    if "parallel" in data:
        config.parallel = bool(data["parallel"])
    if "parallel_workers" in data:
        config.parallel_workers = _non_negative_int(data, "parallel_workers")
    if "format" in data:
        config.format = str(data["format"])
        if config.format not in FORMATS:
            raise ConfigError(config_error(
                f"format must be one of {', '.join(FORMATS)}", key="format"))
    if "functions" in data:
        if not isinstance(data["functions"], list):
            raise ConfigError(config_error("functions must be a list", key="functions"))
        config.functions = [str(f) for f in data["functions"]]
    if "axioms" in data:
        axioms = data["axioms"]
        if not isinstance(axioms, dict):
            raise ConfigError(config_error("axioms must map functions to lists", key="axioms"))
        config.axioms = {
            str(k): [str(s) for s in (v if isinstance(v, list) else [v])]
            for k, v in axioms.items()
        }

    return config


def _non_negative_int(data: Dict[str, Any], key: str) -> int:
    try:
        value = int(data[key])
    except (TypeError, ValueError) as e:
        raise ConfigError(config_error(f"{key} must be an integer", key=key)) from e
    if value < 0:
        raise ConfigError(config_error(f"{key} must not be negative", key=key))
    return value
