"""Runtime configuration for the finishing-floor service."""

from __future__ import annotations

import configparser
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

ENV_PREFIX = "DYEHOUSE_"


@dataclass(frozen=True)
class Settings:
    db_path: Path
    host: str = "0.0.0.0"
    port: int = 8080
    default_section: int = 1
    page_size: int = 50
    status_poll_seconds: int = 30
    # 0 disables scan deduplication
    scan_dedupe_seconds: float = 0.0
    busy_timeout_seconds: float = 20.0
    log_level: str = "INFO"
    default_terminal: str = "WEB-LEITOR"
    seed_demo_data: bool = False


def default_db_path() -> Path:
    return Path("db") / "dyehouse.db"


def _coerce(kind: Any, raw: str) -> Any:
    if kind in (Path, "Path"):
        return Path(raw)
    if kind in (bool, "bool"):
        return raw.strip().lower() in {"1", "true", "yes", "on", "s"}
    if kind in (int, "int"):
        return int(raw)
    if kind in (float, "float"):
        return float(raw)
    return raw


def _overrides(values: Mapping[str, str]) -> Dict[str, Any]:
    known = {field.name: field.type for field in fields(Settings)}
    result: Dict[str, Any] = {}
    for key, raw in values.items():
        name = key.lower()
        if name not in known:
            continue
        try:
            result[name] = _coerce(known[name], raw)
        except ValueError as exc:
            raise ValueError(f"Invalid value {raw!r} for setting {name!r}") from exc
    return result


def load_settings(
    path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Build settings from an optional INI file and ``DYEHOUSE_*`` variables.

    The INI file uses a single ``[dyehouse]`` section whose keys match the
    field names of :class:`Settings`. Environment variables win over the file.
    """

    settings = Settings(db_path=default_db_path())
    if path is not None and path.exists():
        parser = configparser.ConfigParser()
        parser.read(path, encoding="utf-8")
        if parser.has_section("dyehouse"):
            settings = replace(settings, **_overrides(dict(parser.items("dyehouse"))))
    env = os.environ if environ is None else environ
    from_env = {
        key[len(ENV_PREFIX):]: value
        for key, value in env.items()
        if key.startswith(ENV_PREFIX)
    }
    if from_env:
        settings = replace(settings, **_overrides(from_env))
    return settings


__all__ = ["Settings", "default_db_path", "load_settings"]
