"""Configuration for kbtree.

Settings come from a TOML file::

    [kbtree]
    content_dir      = "docs"
    db_path          = "kbtree.duckdb"
    extensions       = [".md", ".markdown"]
    words_per_minute = 200
    walk_timeout     = 30          # seconds, optional
    include_hidden   = false
    follow_symlinks  = true
    debounce_seconds = 2.0
    title            = "Team handbook"

    [aliases]
    "eng/runbooks" = "Runbooks"    # directory path -> display name

Environment variables (all optional; explicit keyword overrides win):
    KBTREE_CONFIG        : path of the TOML file (default: ``./kbtree.toml``)
    KBTREE_CONTENT_DIR   : content directory
    KBTREE_DB_PATH       : DuckDB database file (``:memory:`` for none)
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any

from kbtree.errors import ConfigurationError
from kbtree.parser import WORDS_PER_MINUTE
from kbtree.walker import DEFAULT_EXTENSIONS, FileWalker

if TYPE_CHECKING:
    from kbtree.db import TreeStore
    from kbtree.sync.engine import ReconciliationEngine

DEFAULT_CONFIG_FILE = "kbtree.toml"
DEFAULT_DB_PATH = "kbtree.duckdb"


@dataclass
class KbConfig:
    content_dir: Path
    db_path: str = DEFAULT_DB_PATH
    extensions: tuple[str, ...] = DEFAULT_EXTENSIONS
    words_per_minute: int = WORDS_PER_MINUTE
    walk_timeout: float | None = None
    include_hidden: bool = False
    follow_symlinks: bool = True
    debounce_seconds: float = 2.0
    title: str | None = None
    aliases: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.content_dir = Path(self.content_dir).expanduser()
        self.db_path = str(self.db_path)
        self.extensions = tuple(self.extensions)
        if not self.extensions:
            raise ConfigurationError("extensions must not be empty")
        if not isinstance(self.words_per_minute, int) or self.words_per_minute <= 0:
            raise ConfigurationError(f"words_per_minute must be a positive integer, got {self.words_per_minute!r}")
        if self.walk_timeout is not None and self.walk_timeout <= 0:
            raise ConfigurationError(f"walk_timeout must be positive, got {self.walk_timeout!r}")
        if self.debounce_seconds < 0:
            raise ConfigurationError(f"debounce_seconds must not be negative, got {self.debounce_seconds!r}")
        for key, value in self.aliases.items():
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(f"alias for {key!r} must be a non-empty string")
        self.aliases = {key.strip("/"): value for key, value in self.aliases.items()}

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    def make_walker(self) -> FileWalker:
        return FileWalker(
            self.content_dir,
            extensions=self.extensions,
            include_hidden=self.include_hidden,
            follow_symlinks=self.follow_symlinks,
            timeout=self.walk_timeout,
        )

    def make_store(self) -> "TreeStore":
        from kbtree.db import TreeStore

        return TreeStore(self.db_path)

    def make_engine(self, store: "TreeStore") -> "ReconciliationEngine":
        from kbtree.sync.engine import ReconciliationEngine

        return ReconciliationEngine(
            store,
            self.make_walker(),
            words_per_minute=self.words_per_minute,
            aliases=self.aliases,
        )


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"{path}: {exc}") from exc
    except OSError as exc:
        raise ConfigurationError(f"{path}: {exc.strerror or exc}") from exc


def load_config(path: Path | str | None = None, **overrides: Any) -> KbConfig:
    """Build a :class:`KbConfig` from file, environment, and *overrides*.

    Overrides whose value is ``None`` are ignored so CLI options can be
    passed straight through.
    """
    explicit = path is not None or "KBTREE_CONFIG" in os.environ
    config_path = Path(path or os.environ.get("KBTREE_CONFIG", DEFAULT_CONFIG_FILE))

    data: dict[str, Any] = {}
    if config_path.exists():
        data = _read_toml(config_path)
    elif explicit:
        raise ConfigurationError(f"config file {config_path} does not exist")

    settings = dict(data.get("kbtree", {}))
    aliases = data.get("aliases", {})
    if not isinstance(aliases, dict):
        raise ConfigurationError("[aliases] must be a table")
    settings["aliases"] = dict(aliases)

    # Relative paths in the file are relative to the file itself
    if "content_dir" in settings and config_path.exists():
        file_dir = Path(settings["content_dir"]).expanduser()
        if not file_dir.is_absolute():
            settings["content_dir"] = config_path.absolute().parent / file_dir

    known = {f.name for f in fields(KbConfig)}
    unknown = set(settings) - known
    if unknown:
        raise ConfigurationError(f"unknown settings: {', '.join(sorted(unknown))}")

    if "KBTREE_CONTENT_DIR" in os.environ:
        settings["content_dir"] = os.environ["KBTREE_CONTENT_DIR"]
    if "KBTREE_DB_PATH" in os.environ:
        settings["db_path"] = os.environ["KBTREE_DB_PATH"]
    settings.update({k: v for k, v in overrides.items() if v is not None})

    if "content_dir" not in settings:
        raise ConfigurationError("content_dir is not configured (set it in kbtree.toml or KBTREE_CONTENT_DIR)")
    return KbConfig(**settings)
