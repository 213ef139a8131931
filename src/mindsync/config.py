"""TOML-based configuration for a mindsync hub.

Provides ``load_config`` / ``discover_config`` for loading ``mindsync.toml``
and a set of frozen dataclasses for merge limits, map mailboxes, the
operation log backend and sync queries.
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal


__all__ = [
    "JournalBackend",
    "JournalConfig",
    "MailboxConfig",
    "MergeConfig",
    "MindsyncConfig",
    "SyncConfig",
    "discover_config",
    "load_config",
]


type JournalBackend = Literal["memory", "sqlite"]

CONFIG_FILENAME = "mindsync.toml"


@dataclass(frozen=True)
class MergeConfig:
    """Limits and defaults applied by the merge engine.

    Parameters
    ----------
    max_label_length : int
        Longest accepted node label, in characters.
    default_label : str
        Label given to nodes added without one.
    default_color : str
        Colour given to nodes added without one.
    default_shape : str
        Shape given to nodes added without one.

    Examples
    --------
    >>> MergeConfig(max_label_length=200)
    MergeConfig(max_label_length=200, default_label='New Node', ...)
    """

    max_label_length: int = 5000
    default_label: str = "New Node"
    default_color: str = "#3b82f6"
    default_shape: str = "circle"


@dataclass(frozen=True)
class MailboxConfig:
    """Mailbox settings for map actors.

    Parameters
    ----------
    capacity : int | None
        Maximum queued operations per map. ``None`` for unbounded.

    Examples
    --------
    >>> MailboxConfig(capacity=1000)
    MailboxConfig(capacity=1000)
    """

    capacity: int | None = None


@dataclass(frozen=True)
class JournalConfig:
    """Operation log backend settings.

    Parameters
    ----------
    backend : JournalBackend
        ``"memory"`` or ``"sqlite"``.
    path : str
        SQLite database file, used by the ``sqlite`` backend.
    snapshot_every : int
        Save a map snapshot after this many accepted operations.

    Examples
    --------
    >>> JournalConfig(backend="sqlite", path="maps.db")
    JournalConfig(backend='sqlite', path='maps.db', snapshot_every=50)
    """

    backend: JournalBackend = "memory"
    path: str = "mindsync.db"
    snapshot_every: int = 50


@dataclass(frozen=True)
class SyncConfig:
    """Request/reply settings of the hub.

    Parameters
    ----------
    ask_timeout : float
        Seconds to wait for a map actor to answer.
    history_page_size : int
        Default page size of history queries.
    """

    ask_timeout: float = 5.0
    history_page_size: int = 100


@dataclass(frozen=True)
class MindsyncConfig:
    """Top-level configuration loaded from ``mindsync.toml``.

    Examples
    --------
    >>> config = MindsyncConfig()
    >>> config.system_name
    'mindsync'
    """

    system_name: str = "mindsync"
    merge: MergeConfig = field(default_factory=MergeConfig)
    mailbox: MailboxConfig = field(default_factory=MailboxConfig)
    journal: JournalConfig = field(default_factory=JournalConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def discover_config(start: Path | None = None) -> Path | None:
    """Nearest ``mindsync.toml`` in *start* (default: cwd) or one of its parents."""
    directory = (start or Path.cwd()).resolve()
    for candidate in (directory, *directory.parents):
        if (candidate / CONFIG_FILENAME).is_file():
            return candidate / CONFIG_FILENAME
    return None


def load_config(path: Path | None = None) -> MindsyncConfig:
    """Load a ``MindsyncConfig`` from a TOML file.

    If *path* is ``None``, auto-discovers ``mindsync.toml`` by walking up
    from the current working directory. Returns default config if no file
    is found.

    Raises
    ------
    FileNotFoundError
        If an explicit *path* is given but does not exist.

    Examples
    --------
    >>> config = load_config(Path("mindsync.toml"))
    >>> config.journal.backend
    'sqlite'
    """
    path = path or discover_config()
    if path is None:
        return MindsyncConfig()
    if not path.exists():
        msg = f"Config file not found: {path}"
        raise FileNotFoundError(msg)

    with path.open("rb") as f:
        raw = tomllib.load(f)

    system_raw = raw.get("system", {})

    return MindsyncConfig(
        system_name=system_raw.get("name", "mindsync"),
        merge=MergeConfig(**raw.get("merge", {})),
        mailbox=MailboxConfig(**raw.get("mailbox", {})),
        journal=JournalConfig(**raw.get("journal", {})),
        sync=SyncConfig(**raw.get("sync", {})),
    )
