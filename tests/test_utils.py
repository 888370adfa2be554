from __future__ import annotations

import pytest

from shardkv._utils import (
    EncodingInsensitiveDict,
    b,
    crc16,
    hash_slot,
    nativestr,
    pairs_to_dict,
    slot_for,
    slots_for,
)


class TestHashSlot:
    def test_crc16_check_value(self):
        assert crc16(b"123456789") == 0x31C3

    @pytest.mark.parametrize(
        "key, slot",
        [
            (b"foo", 12182),
            (b"bar", 5061),
            (b"helloworld", 2739),
            (b"test1234", 15785),
            (b"", 0),
        ],
    )
    def test_known_slots(self, key, slot):
        assert hash_slot(key) == slot

    def test_hash_tag(self):
        assert hash_slot(b"{user1}:name") == hash_slot(b"user1")
        assert hash_slot(b"{user1}:name") == hash_slot(b"{user1}:email")

    def test_only_first_tag_is_used(self):
        assert hash_slot(b"{a}{b}") == hash_slot(b"a")

    def test_empty_tag_hashes_whole_key(self):
        assert hash_slot(b"{}user") == crc16(b"{}user") % 16384

    def test_unclosed_tag_hashes_whole_key(self):
        assert hash_slot(b"{user") == crc16(b"{user") % 16384

    def test_str_and_bytes_agree(self):
        assert slot_for("€uro") == slot_for("€uro".encode())

    def test_slots_for_groups_in_order(self):
        grouped = slots_for(["{a}1", "b", "{a}2"])
        assert grouped[slot_for("a")] == ["{a}1", "{a}2"]
        assert grouped[slot_for("b")] == ["b"]


class TestEncodingInsensitiveDict:
    def test_lookup_with_either_type(self):
        mapping = EncodingInsensitiveDict({b"ip": b"127.0.0.1", "port": 6379})
        assert mapping["ip"] == b"127.0.0.1"
        assert mapping[b"port"] == 6379
        assert "ip" in mapping
        assert b"port" in mapping
        assert mapping.get("missing") is None
        with pytest.raises(KeyError):
            mapping["missing"]

    def test_pairs_to_dict(self):
        mapping = pairs_to_dict([b"a", 1, b"b", [2]])
        assert mapping["a"] == 1
        assert mapping["b"] == [2]
        assert len(mapping) == 2

    def test_pairs_to_dict_non_list(self):
        assert len(pairs_to_dict(None)) == 0


def test_string_helpers():
    assert b("x") == b"x"
    assert b(1) == b"1"
    assert nativestr(b"x") == "x"
    assert nativestr(2) == "2"
    with pytest.raises(ValueError):
        nativestr(None)
