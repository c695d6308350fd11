"""Unit tests for FilesystemMirror."""

import os

import pytest

from stager.services.mirror import FilesystemMirror


def _tree(root):
    return sorted(
        p.relative_to(root).as_posix()
        for p in root.rglob("*")
        if p.is_file() or p.is_symlink()
    )


@pytest.mark.unit
class TestFilesystemMirror:
    @pytest.fixture
    def source(self, tmp_path):
        root = tmp_path / "source"
        (root / "core").mkdir(parents=True)
        (root / "core" / "lib.php").write_text("lib")
        (root / "index.php").write_text("index")
        (root / "settings.local.json").write_text("local")
        (root / "sites" / "default" / "files").mkdir(parents=True)
        (root / "sites" / "default" / "files" / "upload.png").write_text("png")
        (root / "sites" / "default" / "settings.php").write_text("settings")
        return root

    @pytest.fixture
    def mirror(self):
        return FilesystemMirror(["settings.local.json", "sites/*/files"])

    def test_is_excluded(self, mirror):
        assert mirror.is_excluded("settings.local.json")
        assert mirror.is_excluded("sites/default/files")
        assert mirror.is_excluded("sites/default/files/a/b.png")
        assert not mirror.is_excluded("sites/default/settings.php")
        assert not mirror.is_excluded("core/settings.local.json.bak")

    def test_copy_skips_excluded(self, mirror, source, tmp_path):
        # Act
        report = mirror.copy(source, tmp_path / "stage")

        # Assert
        assert _tree(tmp_path / "stage") == [
            "core/lib.php",
            "index.php",
            "sites/default/settings.php",
        ]
        assert "index.php" in report.copied

    def test_copy_refuses_existing_destination(self, mirror, source, tmp_path):
        (tmp_path / "stage").mkdir()

        with pytest.raises(FileExistsError):
            mirror.copy(source, tmp_path / "stage")

    def test_copy_missing_source(self, mirror, tmp_path):
        with pytest.raises(FileNotFoundError):
            mirror.copy(tmp_path / "nope", tmp_path / "stage")

    def test_sync_is_incremental(self, mirror, source, tmp_path):
        """Unchanged files are not rewritten on a second sync."""
        stage = tmp_path / "stage"
        mirror.copy(source, stage)

        report = mirror.sync(source, stage)

        assert report.copied == []
        assert report.deleted == []
        assert report.unchanged == 3

    def test_sync_back_preserves_excluded_and_deletes_removed(self, mirror, source, tmp_path):
        """Promotion: changes flow back, excluded paths in the target survive."""
        # Arrange
        stage = tmp_path / "stage"
        mirror.copy(source, stage)
        (stage / "core" / "lib.php").write_text("lib v2")
        (stage / "core" / "new.php").write_text("new")
        (stage / "index.php").unlink()

        # Act
        report = mirror.sync(stage, source)

        # Assert
        assert (source / "core" / "lib.php").read_text() == "lib v2"
        assert (source / "core" / "new.php").exists()
        assert not (source / "index.php").exists()
        assert (source / "settings.local.json").read_text() == "local"
        assert (source / "sites" / "default" / "files" / "upload.png").exists()
        assert sorted(report.copied) == ["core/lib.php", "core/new.php"]
        assert report.deleted == ["index.php"]

    def test_sync_copies_same_size_rewrite(self, mirror, source, tmp_path):
        stage = tmp_path / "stage"
        mirror.copy(source, stage)
        target = stage / "core" / "lib.php"
        target.write_text("LIB")
        stat = target.stat()
        os.utime(target, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1000))

        mirror.sync(stage, source)

        assert (source / "core" / "lib.php").read_text() == "LIB"

    def test_sync_symlinks(self, mirror, source, tmp_path):
        (source / "link.php").symlink_to("index.php")
        stage = tmp_path / "stage"

        mirror.copy(source, stage)

        assert (stage / "link.php").is_symlink()
        assert os.readlink(stage / "link.php") == "index.php"

    def test_nested_directories_refused(self, mirror, source):
        with pytest.raises(ValueError, match="must not contain each other"):
            mirror.sync(source, source / "core")

    def test_sync_missing_source_leaves_destination(self, mirror, source, tmp_path):
        """A vanished source must not empty the destination."""
        before = _tree(source)

        with pytest.raises(FileNotFoundError):
            mirror.sync(tmp_path / "gone", source)

        assert _tree(source) == before

    def test_wildcard_matches_one_segment(self, mirror):
        assert mirror.is_excluded("sites/default/files")
        assert not mirror.is_excluded("sites/a/b/files")
        assert not mirror.is_excluded("sites/default")
