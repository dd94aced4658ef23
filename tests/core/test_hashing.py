"""Tests for lock-file hashing."""

from nightshift.core.hashing import compute_hash, find_files, hash_files


class TestComputeHash:
    def test_deterministic(self):
        assert compute_hash("a", 1) == compute_hash("a", 1)

    def test_order_dependent(self):
        assert compute_hash("a", "b") != compute_hash("b", "a")

    def test_length(self):
        assert len(compute_hash("x", length=12)) == 12


class TestHashFiles:
    def _lockfiles(self, root):
        (root / "Cargo.lock").write_text("root-lock")
        (root / "sub").mkdir()
        (root / "sub" / "Cargo.lock").write_text("sub-lock")

    def test_no_match_is_empty_string(self, tmp_path):
        assert hash_files(tmp_path, "**/Cargo.lock") == ""

    def test_finds_nested_and_root(self, tmp_path):
        self._lockfiles(tmp_path)
        rels = [p.relative_to(tmp_path).as_posix() for p in find_files(tmp_path, "**/Cargo.lock")]
        assert rels == ["Cargo.lock", "sub/Cargo.lock"]

    def test_skips_git_directory(self, tmp_path):
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "Cargo.lock").write_text("x")
        assert find_files(tmp_path, "**/Cargo.lock") == []

    def test_same_content_same_hash(self, tmp_path):
        a, b = tmp_path / "a", tmp_path / "b"
        a.mkdir()
        b.mkdir()
        self._lockfiles(a)
        self._lockfiles(b)
        assert hash_files(a, "**/Cargo.lock") == hash_files(b, "**/Cargo.lock")

    def test_edit_changes_hash(self, tmp_path):
        self._lockfiles(tmp_path)
        before = hash_files(tmp_path, "**/Cargo.lock")
        (tmp_path / "sub" / "Cargo.lock").write_text("sub-lock-v2")
        assert hash_files(tmp_path, "**/Cargo.lock") != before

    def test_unrelated_files_do_not_matter(self, tmp_path):
        self._lockfiles(tmp_path)
        before = hash_files(tmp_path, "**/Cargo.lock")
        (tmp_path / "src.rs").write_text("fn main() {}")
        assert hash_files(tmp_path, "**/Cargo.lock") == before
