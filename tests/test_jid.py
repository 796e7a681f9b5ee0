"""
Tests for JID normalization.
"""

import pytest

from chathost.errors import InvalidIdentityError
from chathost.security.jid import normalize_jid, try_normalize_jid


class TestNormalizeJid:
    @pytest.mark.parametrize("raw, expected", [
        ("12345@s.whatsapp.net", "12345@s.whatsapp.net"),
        (" 12345@S.WhatsApp.NET ", "12345@s.whatsapp.net"),
        ("12345:79@s.whatsapp.net", "12345@s.whatsapp.net"),
        ("+4915112345678", "4915112345678@s.whatsapp.net"),
        ("120363000000@g.us", "120363000000@g.us"),
        ("12345@x", "12345@x"),
    ])
    def test_valid(self, raw, expected):
        assert normalize_jid(raw) == expected

    @pytest.mark.parametrize("raw", [
        "",
        "   ",
        "no-at-sign",
        "a@b@c",
        "@s.whatsapp.net",
        "12345@",
        "1234",
        None,
        12345,
    ])
    def test_invalid(self, raw):
        with pytest.raises(InvalidIdentityError) as exc_info:
            normalize_jid(raw)
        assert exc_info.value.code == "INVALID_IDENTITY"

    def test_try_normalize(self):
        assert try_normalize_jid("bad") is None
        assert try_normalize_jid("1@x") == "1@x"
