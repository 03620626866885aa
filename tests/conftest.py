"""Shared fixtures for demovault tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from demovault import (
    BackupStore,
    CustomNameStore,
    DemoVault,
    JsonLedgerStore,
    SnapshotBuilder,
    VaultConfig,
    VersionLedger,
)
from demovault.utils import ProjectPaths

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from pathlib import Path


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def root(tmp_path: Path) -> Path:
    """Empty project root."""
    site = tmp_path / "site"
    site.mkdir()
    return site.resolve()


@pytest.fixture
def make_tree(root: Path) -> Callable[[dict[str, str | bytes]], None]:
    """Write ``{relative_path: content}`` under the project root."""

    def _make(files: dict[str, str | bytes]) -> None:
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                path.write_bytes(content)
            else:
                path.write_text(content, encoding="utf-8")

    return _make


@pytest.fixture
def config(root: Path) -> VaultConfig:
    return VaultConfig(root=root)


@pytest.fixture
def paths(config: VaultConfig) -> ProjectPaths:
    return ProjectPaths(config.root)


@pytest.fixture
def names(config: VaultConfig) -> CustomNameStore:
    return CustomNameStore(config.custom_names_path)


@pytest.fixture
def snapshots(paths: ProjectPaths, names: CustomNameStore, config: VaultConfig) -> SnapshotBuilder:
    return SnapshotBuilder(paths, names, ignore=config.ignore_rules())


@pytest.fixture
def backups(paths: ProjectPaths, config: VaultConfig) -> BackupStore:
    return BackupStore(paths, config.backup_root)


@pytest.fixture
def ledger(
    config: VaultConfig,
    paths: ProjectPaths,
    names: CustomNameStore,
    snapshots: SnapshotBuilder,
    backups: BackupStore,
    clock: FakeClock,
) -> VersionLedger:
    return VersionLedger(
        JsonLedgerStore(config.ledger_path),
        snapshots,
        backups,
        paths,
        names,
        max_versions=config.max_versions,
        clear_credential=config.clear_credential,
        clock=clock,
    )


@pytest.fixture
def vault(root: Path, clock: FakeClock) -> Iterator[DemoVault]:
    """DemoVault over the project root with a frozen clock."""
    v = DemoVault(root, clock=clock)
    yield v
    v.close()
