"""
Tests for payload parsing, nickname generation and address parsing.
"""

import random

import pytest

from netchat.protocol import (
    DEFAULT_PORT, decode_payload, departure_notice, encode_text,
    generate_nickname, parse_payload,
)
from netchat.transport import Address


class TestParsePayload:
    """Tests for parse_payload()."""

    @pytest.mark.parametrize("payload, nick", [
        (b"/nick Alice", "Alice"),
        (b"/nick\tAlice", "Alice"),
        (b"/nick   Bob ", "Bob "),
        (b"/nick", ""),
        (b"/nick   ", ""),
        (b"/nickname x", "name x"),
    ])
    def test_rename(self, payload, nick):
        """Whitespace after the keyword is skipped, the rest is the name."""
        command = parse_payload(payload)

        assert command.is_rename
        assert command.nick == nick

    @pytest.mark.parametrize("payload", [b"hello", b" /nick Bob", b"/Nick Bob", b"", b"/quit"])
    def test_chat(self, payload):
        """Anything that does not start with /nick is chat text."""
        command = parse_payload(payload)

        assert not command.is_rename
        assert command.text == payload.decode()

    def test_invalid_utf8_is_replaced(self):
        """Undecodable bytes never raise."""
        assert parse_payload(b"\xff\xfe hi").text == "\ufffd\ufffd hi"

    def test_encode_is_exact_utf8(self):
        """No terminator is appended."""
        assert encode_text("héllo") == b"h\xc3\xa9llo"
        assert decode_payload(bytearray(b"ok")) == "ok"


class TestNicknames:
    """Tests for generate_nickname()."""

    def test_range(self):
        """Suffix is drawn from 10000..109999 inclusive."""
        rng = random.Random(42)
        for _ in range(500):
            nick = generate_nickname(rng)
            assert nick.startswith("BraveWarrior")
            assert 10000 <= int(nick[len("BraveWarrior"):]) <= 109999

    def test_seeded_is_reproducible(self):
        """The same seed gives the same names."""
        assert generate_nickname(random.Random(5)) == generate_nickname(random.Random(5))

    def test_default_generator(self):
        """Without an rng the module-level generator is used."""
        assert generate_nickname().startswith("BraveWarrior")


class TestDepartureNotice:
    """Tests for departure_notice()."""

    def test_closed_by_peer_with_reason(self):
        assert departure_notice("Bob", "Goodbye", problem=False) == "Bob hath departed  (Goodbye)"

    def test_closed_by_peer_without_reason(self):
        assert departure_notice("Bob", "", problem=False) == "Bob hath departed"

    def test_problem(self):
        assert departure_notice("Bob", "Timed out", problem=True) == \
            "Alas, Bob hath fallen into shadow.  (Timed out)"


class TestAddress:
    """Tests for Address.parse()."""

    @pytest.mark.parametrize("text, expected", [
        ("example.com", Address("example.com", DEFAULT_PORT)),
        ("203.0.113.22:4000", Address("203.0.113.22", 4000)),
        ("[::1]:4000", Address("::1", 4000)),
        ("[::1]", Address("::1", DEFAULT_PORT)),
        ("::1", Address("::1", DEFAULT_PORT)),
        ("  localhost  ", Address("localhost", DEFAULT_PORT)),
    ])
    def test_valid(self, text, expected):
        assert Address.parse(text, DEFAULT_PORT) == expected

    @pytest.mark.parametrize("text", ["", ":4000", "host:", "[::1]:", "host:abc", "host:0", "host:70000", "[::1", "[::1]x"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            Address.parse(text, DEFAULT_PORT)

    def test_str(self):
        """IPv6 hosts are bracketed, the wildcard host shows as '*'."""
        assert str(Address("::1", 5)) == "[::1]:5"
        assert str(Address("", 5)) == "*:5"
        assert str(Address("localhost", 5)) == "localhost:5"
