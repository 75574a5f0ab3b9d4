"""Pack catalog: the read-only library of workflow blueprints."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..config import StepwiseConfig, load_config
from .base import PackCatalog
from .inmemory import InMemoryPackCatalog
from .loader import (
    load_builtin_packs,
    load_pack_directory,
    load_pack_file,
    parse_pack,
)


def get_catalog(config: Optional[StepwiseConfig] = None) -> InMemoryPackCatalog:
    """Build a catalog from the builtin packs plus ``config.pack_paths``.

    Each configured path may be a single YAML file or a directory of them.
    """

    config = config or load_config()
    templates = load_builtin_packs()
    for raw_path in config.pack_paths:
        path = Path(raw_path).expanduser()
        if path.is_dir():
            templates.extend(load_pack_directory(path))
        else:
            templates.extend(load_pack_file(path))
    return InMemoryPackCatalog(templates)


__all__ = [
    "PackCatalog",
    "InMemoryPackCatalog",
    "get_catalog",
    "load_builtin_packs",
    "load_pack_directory",
    "load_pack_file",
    "parse_pack",
]
