"""Toolkit configuration management.

Handles reading tidywh.yaml, .env overrides and filling in defaults.
See tidywh.example.yaml for the available settings.
"""

import copy
import os
from pathlib import Path
from typing import Optional
import yaml


# Project root and config paths
PROJECT_ROOT = Path(__file__).parent.parent.parent
CONFIG_PATH = PROJECT_ROOT / "tidywh.yaml"
ENV_PATH = PROJECT_ROOT / ".env"

IF_EXISTS_CHOICES = ("fail", "replace", "append")

DEFAULTS = {
    "connection": "default",
    "query": {
        "timeout": None,
        "poll_interval": 0.5,
    },
    "upload": {
        "if_exists": "fail",
        "batch_size": 1000,
    },
    "csvprep": {
        "encoding": "utf-8-sig",
        "jobs": [],
    },
}


def load_env(env_path: Optional[Path] = None):
    """Load environment variables from .env file if it exists."""
    env_path = env_path or ENV_PATH
    if env_path.exists():
        with open(env_path, 'r') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#') and '=' in line:
                    key, value = line.split('=', 1)
                    key = key.strip()
                    # Strip quotes from value if present
                    value = value.strip()
                    if value and value[0] in ['"', "'"] and value[-1] == value[0]:
                        value = value[1:-1]
                    # Don't override existing environment variables
                    if key not in os.environ:
                        os.environ[key] = value


def get_config_path() -> Path:
    """Config file location, honouring TIDYWH_CONFIG."""
    override = os.getenv("TIDYWH_CONFIG")
    if override:
        return Path(override)
    return CONFIG_PATH


def load_config(path: Optional[Path] = None) -> dict:
    """Load toolkit configuration from tidywh.yaml.

    Missing sections and keys are filled from DEFAULTS. Environment variables
    TIDYWH_CONNECTION and TIDYWH_QUERY_TIMEOUT override the file.
    """
    load_env()
    path = path or get_config_path()

    config = {}
    if path.exists():
        with open(path, "r") as f:
            config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Invalid configuration in {path}: expected a mapping")

    merged = copy.deepcopy(DEFAULTS)
    for key, value in config.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key].update(value)
        elif value is not None:
            merged[key] = value

    # Ensure lists exist
    if merged["csvprep"].get("jobs") is None:
        merged["csvprep"]["jobs"] = []

    if os.getenv("TIDYWH_CONNECTION"):
        merged["connection"] = os.environ["TIDYWH_CONNECTION"]
    if os.getenv("TIDYWH_QUERY_TIMEOUT"):
        merged["query"]["timeout"] = float(os.environ["TIDYWH_QUERY_TIMEOUT"])

    if merged["upload"]["if_exists"] not in IF_EXISTS_CHOICES:
        raise ValueError(
            f"upload.if_exists must be one of {', '.join(IF_EXISTS_CHOICES)}, "
            f"got '{merged['upload']['if_exists']}'"
        )

    return merged


def save_config(config: dict, path: Optional[Path] = None) -> None:
    """Save toolkit configuration to tidywh.yaml."""
    path = path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        f.write("# tidywh configuration\n")
        f.write("#\n")
        f.write("# Usage:\n")
        f.write("#   python -m tidywh.csvprep run      # Normalize every csvprep job\n")
        f.write("#   python -m tidywh.snowflake query  # Run SQL against the warehouse\n")
        f.write("\n")
        yaml.dump(config, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


def resolve_job_path(value: str, base_dir: Optional[Path] = None) -> Path:
    """Resolve a job path relative to the project root (or base_dir)."""
    path = Path(value)
    if path.is_absolute():
        return path
    return (base_dir or PROJECT_ROOT) / path


def add_csv_job(config: dict, source: str, destination: str, col_types: str) -> dict:
    """Add or replace a csvprep job keyed by its source path."""
    jobs = config["csvprep"]["jobs"]
    entry = {"source": source, "destination": destination, "col_types": col_types}

    for idx, existing in enumerate(jobs):
        if existing.get("source") == source:
            jobs[idx] = entry
            break
    else:
        jobs.append(entry)

    return entry
