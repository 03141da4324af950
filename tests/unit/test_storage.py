"""Unit tests for storage key handling and the local disk provider."""

from __future__ import annotations

import pytest

from portal.errors import ExternalIOError
from portal.gamification.storage import LocalDiskProvider, delete_stored_files, is_safe_key, upload_prefix

BASE = "http://localhost:8000/uploads"


class TestKeys:
    """Keys are plain relative paths; URLs are owned only when their key is."""

    def test_upload_prefix_scopes_challenge_and_user(self):
        assert upload_prefix(7, 42) == "challenge-submissions/7/42"

    @pytest.mark.parametrize(
        "key",
        ["../victim.txt", "challenge-submissions/../../etc/passwd", "a/./b", "a//b", "/abs", "a\\b", ""],
    )
    def test_unsafe_keys(self, key):
        assert not is_safe_key(key)

    def test_owns_rejects_traversal(self):
        provider = LocalDiskProvider("unused", BASE)
        assert provider.owns(f"{BASE}/challenge-submissions/1/2/a.pdf")
        assert not provider.owns(f"{BASE}/../victim.txt")
        assert not provider.owns(f"{BASE}/challenge-submissions/1/2/../../3/4/a.pdf")
        assert not provider.owns("https://elsewhere.test/challenge-submissions/1/2/a.pdf")

    def test_owns_with_prefix(self):
        provider = LocalDiskProvider("unused", BASE)
        url = f"{BASE}/challenge-submissions/1/2/a.pdf"
        assert provider.owns(url, upload_prefix(1, 2))
        assert not provider.owns(url, upload_prefix(1, 3))
        assert not provider.owns(f"{BASE}/challenge-submissions/1/20/a.pdf", upload_prefix(1, 2))

    def test_new_key_drops_odd_suffixes(self):
        key = LocalDiskProvider.new_key("../../evil.p/hp", upload_prefix(1, 2))
        assert key.startswith("challenge-submissions/1/2/")
        assert is_safe_key(key)
        assert LocalDiskProvider.new_key("Report.PDF", upload_prefix(1, 2)).endswith(".pdf")

    def test_new_key_refuses_unsafe_prefix(self):
        with pytest.raises(ValueError):
            LocalDiskProvider.new_key("a.pdf", "../outside")


class TestLocalDiskProvider:
    """Reads and writes stay inside the storage root."""

    @pytest.mark.asyncio
    async def test_store_and_delete(self, tmp_path):
        provider = LocalDiskProvider(str(tmp_path / "uploads"), BASE)
        url = await provider.store(b"%PDF", filename="cert.pdf", prefix=upload_prefix(3, 9))

        path = tmp_path / "uploads" / provider.key_for(url)
        assert path.read_bytes() == b"%PDF"
        assert path.parent == tmp_path / "uploads" / "challenge-submissions" / "3" / "9"

        await provider.delete(url)
        assert not path.exists()
        # Missing objects are not an error
        await provider.delete(url)

    @pytest.mark.asyncio
    async def test_dot_dot_url_leaves_outside_file(self, tmp_path):
        victim = tmp_path / "victim.txt"
        victim.write_text("keep me")
        provider = LocalDiskProvider(str(tmp_path / "uploads"), BASE)

        deleted, failed = await delete_stored_files(provider, [f"{BASE}/../victim.txt"])

        assert (deleted, failed) == (0, 0)
        assert victim.exists()
        with pytest.raises(ExternalIOError):
            await provider.delete(f"{BASE}/../victim.txt")
        assert victim.exists()

    @pytest.mark.asyncio
    async def test_symlink_out_of_root_refused(self, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        victim = outside / "victim.txt"
        victim.write_text("keep me")
        root = tmp_path / "uploads"
        root.mkdir()
        (root / "challenge-submissions").symlink_to(outside, target_is_directory=True)
        provider = LocalDiskProvider(str(root), BASE)

        deleted, failed = await delete_stored_files(provider, [f"{BASE}/challenge-submissions/victim.txt"])

        assert (deleted, failed) == (0, 1)
        assert victim.exists()
