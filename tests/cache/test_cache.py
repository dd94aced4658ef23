"""Tests for cache keys, the tarball store and the cache manager."""

from __future__ import annotations

from pathlib import Path

import pytest

from nightshift.cache import CacheKey, CacheManager, LocalCacheStore, resolve_cache_path
from nightshift.core.errors import CacheError, ConfigError
from nightshift.orchestration.stage_types import Stage

PATHS = ("~/.cargo/registry", "~/.cargo/git", "target")


def _populate(workspace: Path, home: Path) -> None:
    (workspace / "Cargo.lock").write_text("[[package]]\nname = 'widget'\n")
    reg = home / ".cargo" / "registry" / "index"
    reg.mkdir(parents=True)
    (reg / "config.json").write_text('{"dl": "x"}')
    git = home / ".cargo" / "git" / "db"
    git.mkdir(parents=True)
    target = workspace / "target" / "release"
    target.mkdir(parents=True)
    binary = target / "widget"
    binary.write_bytes(b"\x7fELF...")
    binary.chmod(0o755)
    (target / "link").symlink_to("widget")


def _tree(root: Path) -> dict[str, object]:
    out: dict[str, object] = {}
    for p in sorted(root.rglob("*")):
        rel = p.relative_to(root).as_posix()
        if p.is_symlink():
            out[rel] = ("link", str(p.readlink()))
        elif p.is_dir():
            out[rel] = "dir"
        else:
            out[rel] = (p.read_bytes(), p.stat().st_mode & 0o111 != 0)
    return out


# ---------------------------------------------------------------------------
# CacheKey
# ---------------------------------------------------------------------------


class TestCacheKey:
    def test_serialize(self):
        key = CacheKey("debian10.3", "2", "Linux", "abc123", "cargo")
        assert key.serialize() == "debian10.3-2-Linux-abc123-cargo"
        assert str(key) == key.serialize()

    def test_invalid_part(self):
        with pytest.raises(ConfigError):
            CacheKey("debian 10", "2", "Linux", "abc")

    def test_equal_lock_files_equal_keys(self, tmp_path):
        a, b = tmp_path / "a", tmp_path / "b"
        for d in (a, b):
            d.mkdir()
            (d / "Cargo.lock").write_text("same")
        kwargs = {"platform": "debian10.3", "schema_version": "2"}
        assert CacheKey.from_workspace(a, **kwargs) == CacheKey.from_workspace(b, **kwargs)

    def test_lock_edit_changes_key(self, tmp_path):
        (tmp_path / "Cargo.lock").write_text("v1")
        before = CacheKey.from_workspace(tmp_path, platform="debian10.3", schema_version="2")
        (tmp_path / "Cargo.lock").write_text("v2")
        after = CacheKey.from_workspace(tmp_path, platform="debian10.3", schema_version="2")
        assert before != after

    def test_schema_bump_changes_key(self, tmp_path):
        (tmp_path / "Cargo.lock").write_text("v1")
        k2 = CacheKey.from_workspace(tmp_path, platform="debian10.3", schema_version="2")
        k3 = CacheKey.from_workspace(tmp_path, platform="debian10.3", schema_version="3")
        assert k2.serialize() != k3.serialize()

    def test_from_settings(self, settings, workspace):
        (workspace / "Cargo.lock").write_text("x")
        key = CacheKey.from_settings(settings, workspace)
        assert key.serialize().startswith("debian10.3-2-Linux-")
        assert key.serialize().endswith("-cargo")


# ---------------------------------------------------------------------------
# LocalCacheStore
# ---------------------------------------------------------------------------


class TestResolveCachePath:
    def test_home_and_workspace(self, tmp_path):
        assert resolve_cache_path("~/.cargo/git", workspace=tmp_path / "w", home=tmp_path / "h") == (
            "home/.cargo/git",
            tmp_path / "h" / ".cargo/git",
        )
        assert resolve_cache_path("target", workspace=tmp_path / "w", home=tmp_path / "h")[0] == (
            "workspace/target"
        )

    @pytest.mark.parametrize("bad", ["/etc", "../outside"])
    def test_rejects_escaping_paths(self, tmp_path, bad):
        with pytest.raises(CacheError):
            resolve_cache_path(bad, workspace=tmp_path, home=tmp_path)


class TestLocalCacheStore:
    def test_miss(self, tmp_path, workspace, home):
        store = LocalCacheStore(tmp_path / "cache")
        assert not store.contains("k")
        assert store.restore("k", workspace=workspace, home=home) is None
        assert store.keys() == []

    def test_nothing_to_save(self, tmp_path, workspace, home):
        store = LocalCacheStore(tmp_path / "cache")
        assert store.save("k", PATHS, workspace=workspace, home=home) is None
        assert store.keys() == []

    def test_restore_reproduces_tree(self, tmp_path, workspace, home):
        _populate(workspace, home)
        store = LocalCacheStore(tmp_path / "cache")
        store.save("k", PATHS, workspace=workspace, home=home)

        ws2, home2 = tmp_path / "ws2", tmp_path / "home2"
        assert store.restore("k", workspace=ws2, home=home2) > 0
        assert _tree(home2 / ".cargo") == _tree(home / ".cargo")
        assert _tree(ws2 / "target") == _tree(workspace / "target")

    def test_round_trip_is_byte_identical(self, tmp_path, workspace, home):
        _populate(workspace, home)
        first = LocalCacheStore(tmp_path / "cache1")
        first.save("k", PATHS, workspace=workspace, home=home)

        ws2, home2 = tmp_path / "ws2", tmp_path / "home2"
        first.restore("k", workspace=ws2, home=home2)
        second = LocalCacheStore(tmp_path / "cache2")
        second.save("k", PATHS, workspace=ws2, home=home2)

        assert first.archive_path("k").read_bytes() == second.archive_path("k").read_bytes()

    def test_save_replaces_atomically(self, tmp_path, workspace, home):
        _populate(workspace, home)
        store = LocalCacheStore(tmp_path / "cache")
        store.save("k", PATHS, workspace=workspace, home=home)
        store.save("k", PATHS, workspace=workspace, home=home)
        assert store.keys() == ["k"]
        assert not list((tmp_path / "cache").glob("*.tmp"))

    def test_delete(self, tmp_path, workspace, home):
        _populate(workspace, home)
        store = LocalCacheStore(tmp_path / "cache")
        store.save("k", PATHS, workspace=workspace, home=home)
        store.delete("k")
        assert not store.contains("k")

    def test_invalid_key(self, tmp_path):
        with pytest.raises(CacheError):
            LocalCacheStore(tmp_path).archive_path("../escape")

    def test_corrupt_archive(self, tmp_path, workspace, home):
        store = LocalCacheStore(tmp_path)
        store.archive_path("k").write_bytes(b"garbage")
        with pytest.raises(CacheError):
            store.restore("k", workspace=workspace, home=home)


# ---------------------------------------------------------------------------
# CacheManager
# ---------------------------------------------------------------------------


class TestCacheManager:
    @pytest.fixture
    def manager(self, tmp_path):
        return CacheManager(LocalCacheStore(tmp_path / "cache"), platform="debian10.3", schema_version="2")

    @pytest.fixture
    def stage(self, manager):
        return Stage.action("restore-cache", manager, fatal=False)

    def test_restore_miss(self, manager, stage, run_context):
        result = manager(run_context, stage)
        assert result.success
        assert result.output["hit"] is False
        assert result.output["key"] == manager.key_for(run_context.workspace).serialize()

    def test_save_then_hit(self, manager, stage, run_context, tmp_path):
        _populate(run_context.workspace, run_context.home)
        miss = manager(run_context, stage)
        manager.save(run_context.with_output("restore-cache", miss.output))
        assert manager.store.keys() == [miss.output["key"]]

        # a fresh machine with the same lock file
        ws2, home2 = tmp_path / "ws2", tmp_path / "home2"
        ws2.mkdir()
        (ws2 / "Cargo.lock").write_bytes((run_context.workspace / "Cargo.lock").read_bytes())
        ctx2 = run_context.__class__(run=run_context.run, pipeline_name="p", workspace=ws2, home=home2)
        hit = manager(ctx2, stage)
        assert hit.output["hit"] is True
        assert (home2 / ".cargo" / "registry" / "index" / "config.json").exists()
        assert (ws2 / "target" / "release" / "widget").exists()

    def test_save_skipped_on_hit(self, manager, run_context):
        ctx = run_context.with_output("restore-cache", {"key": "k", "hit": True})
        manager.save(ctx)
        assert manager.store.keys() == []

    def test_save_uses_restore_time_key(self, manager, stage, run_context):
        _populate(run_context.workspace, run_context.home)
        miss = manager(run_context, stage)
        # the build rewrote the lock file; the entry is still stored under the restore key
        (run_context.workspace / "Cargo.lock").write_text("regenerated")
        manager.save(run_context.with_output("restore-cache", miss.output))
        assert manager.store.keys() == [miss.output["key"]]

    def test_from_settings(self, settings):
        manager = CacheManager.from_settings(settings)
        assert manager.paths == PATHS
        assert manager.store.root == settings.cache_dir
