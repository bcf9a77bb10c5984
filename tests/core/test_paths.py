"""Tests for bulkcerts.core.paths."""

from __future__ import annotations

from pathlib import Path

import pytest

from bulkcerts.core.paths import DEFAULT_WORKSPACE, Workspace, email_local_part


class TestEmailLocalPart:
    @pytest.mark.parametrize(
        ("email", "expected"),
        [
            ("username@example.com", "username"),
            ("plus+addressing@example.com", "plus+addressing"),
            ("@foobar.com", "foobar.com"),
            ("not-an-email", "not-an-email"),
            ("", ""),
        ],
    )
    def test_local_part(self, email, expected):
        assert email_local_part(email) == expected


class TestSitePaths:
    def test_site_is_case_insensitive(self):
        ws = Workspace("/data")
        assert ws.site("Test.com") == ws.site("test.com")
        assert ws.site("test.com") == Path("/data/sites/test.com")

    @pytest.mark.parametrize("domain", ["example.com", "WWW.Example.COM", "a.b.c.d"])
    def test_files_nest_under_site(self, domain):
        ws = Workspace("/data")
        for path in (ws.site_cert(domain), ws.site_key(domain), ws.site_meta(domain)):
            assert path.parent == ws.site(domain)

    def test_file_names(self):
        ws = Workspace("/data")
        assert ws.site_cert("Example.com").name == "example.com.crt"
        assert ws.site_key("example.com").name == "example.com.key"
        assert ws.site_meta("example.com").name == "example.com.json"

    def test_sites_root(self):
        assert Workspace("/data").sites() == Path("/data/sites")

    def test_default_root(self):
        assert Workspace().root == Path(DEFAULT_WORKSPACE)


class TestUserPaths:
    def test_user_uses_local_part(self):
        ws = Workspace("/data")
        assert ws.user("Me@Example.com") == Path("/data/users/me")
        assert ws.user_reg("me@example.com") == Path("/data/users/me/me.json")
        assert ws.user_key("me@example.com") == Path("/data/users/me/me.key")

    def test_empty_email_uses_default(self):
        ws = Workspace("/data")
        assert ws.user("") == Path("/data/users/default")
        assert ws.user_reg("") == Path("/data/users/default/default.json")
        assert ws.user_key("") == Path("/data/users/default/default.key")

    def test_users_root(self):
        assert Workspace("/data").users() == Path("/data/users")

    def test_no_io(self, tmp_path):
        ws = Workspace(tmp_path / "nowhere")
        ws.user_key("a@b.c")
        ws.site_meta("example.com")
        assert not (tmp_path / "nowhere").exists()
