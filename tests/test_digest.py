"""Tests for content fingerprints."""

from bundle_reconciler.digest import ABSENT, digest_bytes, digest_file, digest_text, is_absent


EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class TestDigestFile:
    """digest_file behavior on present and absent paths."""

    def test_same_bytes_same_digest(self, tmp_path):
        """Two files with identical bytes have identical digests."""
        a = tmp_path / "a.txt"
        b = tmp_path / "b.txt"
        a.write_bytes(b"hello\n")
        b.write_bytes(b"hello\n")
        assert digest_file(a) == digest_file(b)

    def test_different_bytes_differ(self, tmp_path):
        """A single changed byte changes the digest."""
        a = tmp_path / "a.txt"
        b = tmp_path / "b.txt"
        a.write_bytes(b"hello\n")
        b.write_bytes(b"hello!\n")
        assert digest_file(a) != digest_file(b)

    def test_is_hex_sha256(self, tmp_path):
        """Empty file hashes to the well-known SHA-256 of no bytes."""
        f = tmp_path / "empty"
        f.write_bytes(b"")
        assert digest_file(f) == EMPTY_SHA256

    def test_repeatable(self, tmp_path):
        """Hashing the same file twice gives the same result."""
        f = tmp_path / "big.bin"
        f.write_bytes(b"x" * 200_000)
        assert digest_file(f) == digest_file(f)
        assert digest_file(f) == digest_bytes(b"x" * 200_000)

    def test_missing_file_is_absent(self, tmp_path):
        """A nonexistent path yields the ABSENT sentinel, not an error."""
        assert digest_file(tmp_path / "nope") == ABSENT
        assert is_absent(digest_file(tmp_path / "nope"))

    def test_directory_is_absent(self, tmp_path):
        """A directory is not file content."""
        assert digest_file(tmp_path) == ABSENT

    def test_absent_never_matches_empty_file(self, tmp_path):
        """A missing file and an empty file are distinguishable."""
        f = tmp_path / "empty"
        f.write_bytes(b"")
        assert digest_file(f) != digest_file(tmp_path / "missing")


class TestDigestText:
    """digest_text hashes UTF-8 text."""

    def test_matches_bytes(self):
        assert digest_text("héllo") == digest_bytes("héllo".encode("utf-8"))

    def test_empty_text(self):
        assert digest_text("") == EMPTY_SHA256
