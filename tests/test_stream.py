"""Tests for zwl_stream.py - little-endian cursor primitives."""
import struct

import pytest

from zwl_errors import InvalidFormat, WalletIOError
from zwl_stream import WalletStream, WalletStreamWriter, txid_to_hex


class TestFixedWidthReads:
    """Test integer and float reads."""

    def test_little_endian_integers(self):
        data = struct.pack('<BIiQqd', 7, 0xDEADBEEF, -5, 2**63, -2, 1.5)
        stream = WalletStream(data)

        assert stream.read_u8() == 7
        assert stream.read_u32() == 0xDEADBEEF
        assert stream.read_i32() == -5
        assert stream.read_u64() == 2**63
        assert stream.read_i64() == -2
        assert stream.read_f64() == 1.5
        assert stream.is_at_end()

    def test_truncated_read_is_io_error(self):
        stream = WalletStream(b'\x01\x02\x03')
        with pytest.raises(WalletIOError):
            stream.read_u64()

    def test_flag_is_any_nonzero(self):
        stream = WalletStream(b'\x00\x01\x05')
        assert stream.read_flag() is False
        assert stream.read_flag() is True
        assert stream.read_flag() is True

    def test_usize_too_large(self, monkeypatch):
        monkeypatch.setattr('zwl_stream.USIZE_MAX', 2**31 - 1)
        stream = WalletStream(struct.pack('<Q', 2**40))
        with pytest.raises(InvalidFormat):
            stream.read_usize()


class TestCompositeReads:
    """Test strings, optionals and vectors."""

    def test_string(self):
        data = WalletStreamWriter().write_string("main").getvalue()
        assert data == struct.pack('<Q', 4) + b'main'
        assert WalletStream(data).read_string() == "main"

    def test_invalid_utf8_string(self):
        data = struct.pack('<Q', 2) + b'\xff\xfe'
        with pytest.raises(InvalidFormat):
            WalletStream(data).read_string()

    def test_optional_absent_and_present(self):
        stream = WalletStream(b'\x00\x01\x2a')
        assert stream.read_optional(WalletStream.read_u8) is None
        assert stream.read_optional(WalletStream.read_u8) == 42

    def test_optional_noncanonical_flag(self):
        with pytest.raises(InvalidFormat) as exc:
            WalletStream(b'\x02\x2a').read_optional(WalletStream.read_u8)
        assert "non-canonical" in str(exc.value)

    def test_vector(self):
        data = struct.pack('<QBBB', 3, 1, 2, 3)
        assert WalletStream(data).read_vector(WalletStream.read_u8) == [1, 2, 3]

    def test_vector_count_past_end(self):
        data = struct.pack('<Q', 1000) + b'\x00'
        with pytest.raises(WalletIOError):
            WalletStream(data).read_vector(WalletStream.read_u8)

    def test_position_map_sorted(self):
        data = WalletStreamWriter().write_vector(
            [(9, 1), (3, 0)], lambda w, kv: w.write_u64(kv[0]).write_u64(kv[1])
        ).getvalue()
        assert list(WalletStream(data).read_position_map().items()) == [(3, 0), (9, 1)]


class TestWriter:
    """Test the writer mirrors the reader."""

    def test_chained_writes(self):
        w = WalletStreamWriter()
        w.write_u8(1).write_i32(-1).write_optional(None, WalletStreamWriter.write_u64)
        assert w.getvalue() == b'\x01' + struct.pack('<i', -1) + b'\x00'

    def test_byte_vector(self):
        data = WalletStreamWriter().write_byte_vector(b'abc').getvalue()
        assert WalletStream(data).read_byte_vector() == b'abc'

    def test_txid_display_is_reversed(self):
        assert txid_to_hex(bytes(range(32))).startswith("1f1e1d")
