"""YAML configuration discovery for ppage_sync.

Config files are looked up in a fixed order, the ones found are merged
section by section ("project wins") and ``${VAR}`` references are
expanded against the environment afterwards.  A file may pull another
one in with ``!include``.

Usage:
    from ppage_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PPAGE_SYNC_CONFIG"
CONFIG_DIR_NAME = ".ppage_sync"
CONFIG_FILE_NAMES = ("config.yml", "config.yaml")

# ${NAME} or ${NAME:-default}
_ENV_REF = re.compile(r"\$\{(?P<name>[^}:]+?)(?::-(?P<default>.*?))?\}")


# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------


def interpolate_env_vars(value: str) -> str:
    """Expand ``${VAR}`` and ``${VAR:-default}`` in *value*.

    An unset or empty variable expands to its default, or to ``""`` when
    none is given.  An unterminated ``${`` is kept as is.
    """

    def _expand(match: re.Match) -> str:
        return os.environ.get(match["name"]) or match["default"] or ""

    return _ENV_REF.sub(_expand, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {key: _interpolate_recursive(val) for key, val in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    return obj


# ---------------------------------------------------------------------------
# !include
# ---------------------------------------------------------------------------


class ConfigLoader(yaml.SafeLoader):
    """``SafeLoader`` that understands ``!include <path>``.

    Each loader knows the chain of files that led to it, so an include
    cycle is reported instead of recursing forever.  Registering the tag
    on this subclass leaves ``yaml.SafeLoader`` itself untouched.
    """

    def __init__(self, stream, include_stack: tuple[Path, ...] = ()):
        super().__init__(stream)
        self.include_stack = include_stack

    def include(self, node: yaml.ScalarNode) -> Any:
        current = self.include_stack[-1]
        target = Path(self.construct_scalar(node)).expanduser()
        if not target.is_absolute():
            target = current.parent / target
        target = target.resolve()

        if target in self.include_stack:
            chain = " -> ".join(str(p) for p in (*self.include_stack, target))
            raise ValueError(f"Circular include detected: {chain}")
        if not target.exists():
            raise FileNotFoundError(
                f"Include file not found: {target} (referenced from {current})"
            )
        return _load_yaml_with_includes(target, self.include_stack)


ConfigLoader.add_constructor("!include", ConfigLoader.include)


def _load_yaml_with_includes(
    path: Path, _include_stack: tuple[Path, ...] = ()
) -> Any:
    path = Path(path).resolve()
    with open(path, encoding="utf-8") as fh:
        loader = ConfigLoader(fh, (*_include_stack, path))
        try:
            return loader.get_single_data()
        finally:
            loader.dispose()


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def _candidate_paths() -> list[Path]:
    candidates = []
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    project_dir = Path.cwd() / CONFIG_DIR_NAME
    candidates.extend(project_dir / name for name in CONFIG_FILE_NAMES)
    candidates.append(Path.home() / ".config" / "ppage_sync" / "config.yml")
    return candidates


def discover_config_files() -> list[Path]:
    """Existing config files, highest precedence first.

    Order: ``$PPAGE_SYNC_CONFIG``, ``./.ppage_sync/config.yml``,
    ``./.ppage_sync/config.yaml``, ``~/.config/ppage_sync/config.yml``.
    """
    found: list[Path] = []
    for path in _candidate_paths():
        if path.is_file() and path not in found:
            found.append(path)
    return found


_STARTER_CONFIG = """\
# ppage-sync configuration
#
# Remote settings can also be set via environment variables:
#   PPAGE_REMOTE_BACKEND, PPAGE_REMOTE_URL, PPAGE_REMOTE_TOKEN,
#   PPAGE_REMOTE_PATH, PPAGE_NAMESPACE, PPAGE_INSECURE
#
# remote:
#   backend: http            # memory | directory | http
#   url: https://blobs.example.com/v1
#   token: ${PPAGE_REMOTE_TOKEN}
#   namespace: ppage-app
#   connect_timeout: 10
#   read_timeout: 60
#
# local:
#   path: ~/.local/share/ppage_sync/store.json
#   state_dir: ~/.local/share/ppage_sync/state
#
# sync:
#   hash_workers: 8
#   conflict_label: conflict copy
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def resolve_config_path() -> Path:
    """The first discovered config file, else the project default path."""
    found = discover_config_files()
    if found:
        return found[0]
    return Path.cwd() / CONFIG_DIR_NAME / CONFIG_FILE_NAMES[0]


def ensure_config(target: Path | None = None) -> Path:
    """Return the active config file, writing a starter file if none exists.

    Args:
        target: Where to write the starter file.  Defaults to
            ``resolve_config_path()``.
    """
    found = discover_config_files()
    if found:
        logger.debug("Using existing config %s", found[0])
        return found[0]

    path = target or resolve_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", path)
    return path


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def load_hierarchical_config() -> dict[str, Any]:
    """Merge every discovered config file into one dict.

    Files are applied from lowest to highest precedence and a top-level
    section from a later file replaces that whole section.  ``${VAR}``
    references are expanded after the merge.  With no files the result
    is ``{}``, which ``build_config()`` turns into the defaults.
    """
    merged: dict[str, Any] = {}
    for path in reversed(discover_config_files()):
        logger.debug("Loading config: %s", path)
        try:
            data = _load_yaml_with_includes(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if data is None:
            continue
        if not isinstance(data, dict):
            logger.warning(
                "Ignoring %s: top level is %s, not a mapping",
                path,
                type(data).__name__,
            )
            continue
        merged.update(data)

    return _interpolate_recursive(merged)
