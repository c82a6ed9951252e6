from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Mapping, Optional

from .s3 import DEFAULT_ENDPOINT

ENV_PREFIX = "BUCKETFS_"
ENV_FIELDS = {
    "ACCESS_KEY": "access_key",
    "SECRET_KEY": "secret_key",
    "BUCKET": "bucket",
    "ENDPOINT": "endpoint",
    "ROOT": "browser_root",
    "REGION": "region",
}


@dataclass(frozen=True)
class BrowserConfig:
    bucket: str = ""
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    endpoint: str = DEFAULT_ENDPOINT
    browser_root: str = "/"
    region: Optional[str] = None
    delete_concurrency: int = 3
    upload_concurrency: int = 0
    refresh_interval: float = 0.0

    def merged(self, values: Mapping[str, object]) -> "BrowserConfig":
        known = {item.name: item for item in fields(self)}
        updates: dict[str, object] = {}
        for name, value in values.items():
            if name not in known or value is None:
                continue
            current = getattr(self, name)
            if isinstance(current, bool) or not isinstance(current, (int, float)):
                updates[name] = str(value)
                continue
            try:
                updates[name] = type(current)(value)
            except (TypeError, ValueError):
                continue
        return replace(self, **updates)


def config_base_dir() -> Path:
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        base = Path(config_home).expanduser()
    else:
        base = Path.home() / ".config"
    return base / "bucketfs"


def default_config_path() -> Path:
    return config_base_dir() / "config.json"


def read_config_file(path: Path) -> dict[str, object]:
    try:
        payload = json.loads(path.read_text())
    except Exception:
        return {}
    if not isinstance(payload, dict):
        return {}
    return payload


def read_environment(environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    source = os.environ if environ is None else environ
    values: dict[str, str] = {}
    for suffix, name in ENV_FIELDS.items():
        value = source.get(f"{ENV_PREFIX}{suffix}")
        if value:
            values[name] = value
    return values


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[Mapping[str, object]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BrowserConfig:
    config = BrowserConfig()
    config = config.merged(read_config_file(path or default_config_path()))
    config = config.merged(read_environment(environ))
    if overrides:
        config = config.merged(overrides)
    return config
