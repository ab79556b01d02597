# votifier/loader.py
"""
Finds vote listeners to register at startup.

A listener directory holds one JSON descriptor per listener:

    {
        "entry_point": "my_rewards:RewardListener",
        "source": "my_rewards.py",
        "options": {"points": 5}
    }

`entry_point` is `module:attribute`. When `source` is given, the module is
imported from that file (relative to the directory) instead of `sys.path`.
`options` are passed to the constructor as keyword arguments. The listener
is registered under the descriptor's file name without the extension.
"""

import importlib
import importlib.util
import json
import logging
import sys
from importlib.metadata import entry_points
from pathlib import Path
from typing import Any, List, Tuple

from .registry import VoteListener

logger = logging.getLogger(__name__)

DESCRIPTOR_SUFFIX = ".json"
ENTRY_POINT_GROUP = "votifier.listeners"


def _import_from_file(module_name: str, file_path: Path):
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import {file_path}")
    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return module


def resolve(entry_point: str, source: Path | None = None) -> Any:
    """Resolves `module:attribute` to the object it names."""
    module_name, sep, attr_path = entry_point.partition(":")
    if not sep or not module_name or not attr_path:
        raise ValueError(f"Entry point must look like 'module:attribute', got {entry_point!r}")
    if source is not None:
        module = _import_from_file(module_name, source)
    else:
        module = importlib.import_module(module_name)
    obj = module
    for part in attr_path.split("."):
        obj = getattr(obj, part)
    return obj


def instantiate(target: Any, options: dict | None = None) -> VoteListener:
    """Calls a class or factory with `options`; checks the result can take votes."""
    listener = target(**(options or {}))
    if not isinstance(listener, VoteListener):
        raise TypeError(f"{type(listener).__name__} has no vote_made() method")
    return listener


def load_descriptor(descriptor: Path) -> VoteListener:
    data = json.loads(descriptor.read_text(encoding="utf-8"))
    if not isinstance(data, dict) or "entry_point" not in data:
        raise ValueError("descriptor needs an 'entry_point' key")
    source = data.get("source")
    source_path = descriptor.parent / source if source else None
    options = data.get("options") or {}
    if not isinstance(options, dict):
        raise ValueError("'options' must be an object")
    return instantiate(resolve(data["entry_point"], source_path), options)


def discover(directory) -> List[Tuple[str, VoteListener]]:
    """
    Builds a listener for every descriptor in `directory`.

    A descriptor that fails to load is logged and skipped; it never stops the
    others or the server. A missing directory yields no listeners.
    """
    directory = Path(directory)
    if not directory.is_dir():
        logger.warning("Listener directory %s does not exist; no listeners loaded.", directory)
        return []

    listeners = []
    for descriptor in sorted(directory.glob(f"*{DESCRIPTOR_SUFFIX}")):
        name = descriptor.stem
        try:
            listener = load_descriptor(descriptor)
        except Exception:
            logger.exception("Unable to load vote listener from %s", descriptor)
            continue
        logger.info("Loaded vote listener: %s", name)
        listeners.append((name, listener))
    return listeners


def from_entry_points(group: str = ENTRY_POINT_GROUP) -> List[Tuple[str, VoteListener]]:
    """Builds listeners advertised by installed distributions under `group`."""
    listeners = []
    for ep in entry_points(group=group):
        try:
            listener = instantiate(ep.load())
        except Exception:
            logger.exception("Unable to load vote listener entry point '%s'", ep.name)
            continue
        logger.info("Loaded vote listener: %s", ep.name)
        listeners.append((ep.name, listener))
    return listeners
