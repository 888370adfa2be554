from __future__ import annotations

import pytest

from shardkv._packer import Packer
from shardkv.constants import CHUNK_THRESHOLD
from shardkv.exceptions import ResponseError
from shardkv.parser import Parser
from shardkv.typing import NULL_ARRAY


@pytest.fixture
def packer():
    return Packer("utf-8")


class TestPackCommand:
    def test_simple_command(self, packer):
        assert b"".join(packer.pack_command("SET", "key", "value")) == (
            b"*3\r\n$3\r\nSET\r\n$3\r\nkey\r\n$5\r\nvalue\r\n"
        )

    def test_multi_word_command(self, packer):
        assert b"".join(packer.pack_command(b"CLUSTER SHARDS")) == (
            b"*2\r\n$7\r\nCLUSTER\r\n$6\r\nSHARDS\r\n"
        )

    def test_numbers(self, packer):
        assert b"".join(packer.pack_command("INCRBYFLOAT", "k", 1.5, 3)) == (
            b"*4\r\n$11\r\nINCRBYFLOAT\r\n$1\r\nk\r\n$3\r\n1.5\r\n$1\r\n3\r\n"
        )

    def test_unicode_argument(self, packer):
        assert b"".join(packer.pack_command("SET", "k", "€")) == (
            b"*3\r\n$3\r\nSET\r\n$1\r\nk\r\n$3\r\n\xe2\x82\xac\r\n"
        )

    def test_bool_rejected(self, packer):
        with pytest.raises(TypeError):
            packer.pack_command("SET", "k", True)

    def test_large_argument_is_not_copied(self, packer):
        value = b"x" * (CHUNK_THRESHOLD + 1)
        chunks = packer.pack_command("SET", "k", value)
        assert any(chunk is value for chunk in chunks)
        parser = Parser()
        parser.feed(b"".join(chunks))
        assert parser.parse().response == [b"SET", b"k", value]

    def test_pack_commands(self, packer):
        packed = b"".join(packer.pack_commands([("PING",), ("GET", "k")]))
        assert packed == b"*1\r\n$4\r\nPING\r\n*2\r\n$3\r\nGET\r\n$1\r\nk\r\n"


class TestPackReply:
    def test_null_bulk_string_and_null_array(self, packer):
        assert packer.pack_reply(None) == b"$-1\r\n"
        assert packer.pack_reply(NULL_ARRAY) == b"*-1\r\n"

    def test_empty_values(self, packer):
        assert packer.pack_reply([]) == b"*0\r\n"
        assert packer.pack_reply(b"") == b"$0\r\n\r\n"

    def test_error(self, packer):
        assert packer.pack_reply(ResponseError("ERR boom")) == b"-ERR boom\r\n"

    @pytest.mark.parametrize(
        "value",
        [
            [None, NULL_ARRAY, [], b""],
            [[[b"a", 1], [NULL_ARRAY]], -3, [[[]]]],
            NULL_ARRAY,
        ],
    )
    def test_parses_back_to_the_same_value(self, packer, value):
        parser = Parser()
        parser.feed(packer.pack_reply(value))
        assert parser.parse().response == value
