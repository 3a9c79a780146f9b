import pytest

from app.services.origins import OriginPolicy, normalize_origin


class TestNormalizeOrigin:
    @pytest.mark.parametrize(
        "origin,expected",
        [
            ("https://library.example.edu", "https://library.example.edu"),
            ("HTTPS://Library.Example.edu", "https://library.example.edu"),
            ("http://localhost:3000", "http://localhost:3000"),
            ("http://[::1]:8080", "http://[::1]:8080"),
        ],
    )
    def test_valid(self, origin, expected):
        assert normalize_origin(origin) == expected

    @pytest.mark.parametrize(
        "origin",
        [
            None,
            "",
            "*",
            "null",
            "ftp://library.example.edu",
            "https://library.example.edu/",
            "https://library.example.edu/path",
            "https://library.example.edu?x=1",
            "https://user:pw@library.example.edu",
            "https://*.example.edu",
            "http://localhost:99999",
        ],
    )
    def test_invalid(self, origin):
        assert normalize_origin(origin) is None


class TestOriginPolicy:
    def test_configured_origin_allowed(self, origin_policy):
        assert origin_policy.is_allowed("https://library.example.edu") is True

    def test_unlisted_origin_denied(self, origin_policy):
        assert origin_policy.is_allowed("https://evil.example.com") is False

    def test_lookalike_denied(self, origin_policy):
        assert origin_policy.is_allowed("https://library.example.edu.evil.com") is False

    def test_non_canonical_spelling_denied(self, origin_policy):
        assert origin_policy.is_allowed("https://LIBRARY.example.edu") is False

    def test_loopback_allowed(self, origin_policy):
        assert origin_policy.is_allowed("http://localhost:5173") is True
        assert origin_policy.is_allowed("http://127.0.0.1:3000") is True

    def test_loopback_can_be_disabled(self):
        policy = OriginPolicy(allowed_origins=(), allow_loopback=False)
        assert policy.is_allowed("http://localhost:5173") is False

    def test_invalid_configured_entries_ignored(self):
        policy = OriginPolicy(
            allowed_origins=("*", "https://ok.example.edu", "not an origin"),
            allow_loopback=False,
        )
        assert policy.allowed_origins == ("https://ok.example.edu",)

    def test_frame_ancestors_without_origin(self, origin_policy):
        assert (
            origin_policy.frame_ancestors()
            == "'self' https://library.example.edu"
        )

    def test_frame_ancestors_reflects_loopback(self, origin_policy):
        assert origin_policy.frame_ancestors("http://localhost:5173") == (
            "'self' https://library.example.edu http://localhost:5173"
        )

    def test_frame_ancestors_ignores_untrusted(self, origin_policy):
        value = origin_policy.frame_ancestors("https://evil.example.com")
        assert "evil" not in value
        assert "*" not in value
