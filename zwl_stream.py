"""
Wallet Stream Primitives
========================

Forward-only cursor over the bytes of a ZecWallet Lite wallet file, plus the
matching writer used by the sub-records that can be re-encoded.

Encoding Rules:
--------------
| Kind     | Layout                                        |
|----------|-----------------------------------------------|
| Integer  | fixed width, little-endian                    |
| String   | u64 byte length + UTF-8 bytes                 |
| Optional | u8 presence flag (0 / 1) + payload if present |
| Vector   | u64 element count + elements                  |
| usize    | u64 that must fit the host's native size type |

The cursor never seeks backwards. Every decode function takes the stream as
its first argument, so independent decodes share nothing.
"""

import struct
import sys
from typing import Any, Callable, Iterable, List, Optional, Tuple

from zwl_errors import InvalidFormat, WalletIOError


HASH_SIZE = 32
TXID_SIZE = 32
USIZE_MAX = sys.maxsize


class WalletStream:
    """
    Sequential little-endian reader over an in-memory buffer.

    Attributes:
        data: Raw bytes being decoded
        pos: Current read position
        size: Total size of the data
    """

    def __init__(self, data: bytes):
        self.data = bytes(data)
        self.pos = 0
        self.size = len(self.data)

    @property
    def remaining(self) -> int:
        return self.size - self.pos

    def is_at_end(self) -> bool:
        return self.pos >= self.size

    # -------------------------------------------------------------------------
    # LOW-LEVEL READ METHODS
    # -------------------------------------------------------------------------

    def read_bytes(self, n: int) -> bytes:
        """
        Read N raw bytes from current position and advance.

        Raises:
            WalletIOError: If fewer than N bytes remain
        """
        if n < 0:
            raise InvalidFormat(f"negative read length {n} at offset 0x{self.pos:X}")
        if self.pos + n > self.size:
            raise WalletIOError(
                f"unexpected end of stream at offset 0x{self.pos:X}: "
                f"wanted {n} bytes, {self.remaining} remaining"
            )
        result = self.data[self.pos:self.pos + n]
        self.pos += n
        return result

    def _unpack(self, fmt: str, size: int) -> Any:
        return struct.unpack(fmt, self.read_bytes(size))[0]

    def read_u8(self) -> int:
        return self.read_bytes(1)[0]

    def read_u32(self) -> int:
        return self._unpack('<I', 4)

    def read_i32(self) -> int:
        return self._unpack('<i', 4)

    def read_u64(self) -> int:
        return self._unpack('<Q', 8)

    def read_i64(self) -> int:
        return self._unpack('<q', 8)

    def read_f64(self) -> float:
        return self._unpack('<d', 8)

    def read_flag(self) -> bool:
        """Read a byte where any non-zero value means True."""
        return self.read_u8() > 0

    def read_hash(self) -> bytes:
        return self.read_bytes(HASH_SIZE)

    def read_txid(self) -> bytes:
        return self.read_bytes(TXID_SIZE)

    def read_usize(self) -> int:
        """
        Read a size value stored as u64.

        The value must fit the host's native size type; anything larger is
        rejected rather than truncated.
        """
        value = self.read_u64()
        if value > USIZE_MAX:
            raise InvalidFormat(
                f"usize could not be decoded from a 64-bit value on this platform: {value}"
            )
        return value

    # -------------------------------------------------------------------------
    # COMPOSITE READ METHODS
    # -------------------------------------------------------------------------

    def read_string(self) -> str:
        """Read a u64-length-prefixed UTF-8 string."""
        length = self.read_u64()
        start = self.pos
        raw = self.read_bytes(length)
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError as e:
            raise InvalidFormat(f"string at offset 0x{start:X} is not valid UTF-8: {e}")

    def read_optional(self, read_fn: Callable[['WalletStream'], Any]) -> Optional[Any]:
        """
        Read an optional value: presence byte, then the payload if present.

        Args:
            read_fn: Decoder for the payload, called with this stream
        """
        flag = self.read_u8()
        if flag == 0:
            return None
        if flag == 1:
            return read_fn(self)
        raise InvalidFormat(f"non-canonical optional flag 0x{flag:02X} at offset 0x{self.pos - 1:X}")

    def read_vector(self, read_fn: Callable[['WalletStream'], Any]) -> List[Any]:
        """
        Read a u64-count-prefixed sequence of elements.

        Every element occupies at least one byte, so a count larger than the
        bytes left is a truncated stream.
        """
        count = self.read_u64()
        if count > self.remaining:
            raise WalletIOError(
                f"sequence at offset 0x{self.pos - 8:X} claims {count} elements "
                f"but only {self.remaining} bytes remain"
            )
        return [read_fn(self) for _ in range(count)]

    def read_byte_vector(self) -> bytes:
        return self.read_bytes(self.read_u64())

    def read_position_map(self) -> dict:
        """Read a Vec<(position, slot)> as an ordered dict."""
        pairs = self.read_vector(lambda s: (s.read_usize(), s.read_usize()))
        return dict(sorted(pairs))


class WalletStreamWriter:
    """Little-endian writer mirroring WalletStream."""

    def __init__(self):
        self.buf = bytearray()

    def getvalue(self) -> bytes:
        return bytes(self.buf)

    def write_bytes(self, data: bytes) -> 'WalletStreamWriter':
        self.buf.extend(data)
        return self

    def write_u8(self, value: int) -> 'WalletStreamWriter':
        return self.write_bytes(struct.pack('<B', value))

    def write_u32(self, value: int) -> 'WalletStreamWriter':
        return self.write_bytes(struct.pack('<I', value))

    def write_i32(self, value: int) -> 'WalletStreamWriter':
        return self.write_bytes(struct.pack('<i', value))

    def write_u64(self, value: int) -> 'WalletStreamWriter':
        return self.write_bytes(struct.pack('<Q', value))

    def write_i64(self, value: int) -> 'WalletStreamWriter':
        return self.write_bytes(struct.pack('<q', value))

    def write_f64(self, value: float) -> 'WalletStreamWriter':
        return self.write_bytes(struct.pack('<d', value))

    def write_flag(self, value: bool) -> 'WalletStreamWriter':
        return self.write_u8(1 if value else 0)

    def write_string(self, value: str) -> 'WalletStreamWriter':
        raw = value.encode('utf-8')
        self.write_u64(len(raw))
        return self.write_bytes(raw)

    def write_optional(self, value: Optional[Any],
                       write_fn: Callable[['WalletStreamWriter', Any], Any]) -> 'WalletStreamWriter':
        if value is None:
            return self.write_u8(0)
        self.write_u8(1)
        write_fn(self, value)
        return self

    def write_vector(self, items: Iterable[Any],
                     write_fn: Callable[['WalletStreamWriter', Any], Any]) -> 'WalletStreamWriter':
        items = list(items)
        self.write_u64(len(items))
        for item in items:
            write_fn(self, item)
        return self

    def write_byte_vector(self, data: bytes) -> 'WalletStreamWriter':
        self.write_u64(len(data))
        return self.write_bytes(data)

    def write_position_map(self, mapping: dict) -> 'WalletStreamWriter':
        return self.write_vector(sorted(mapping.items()),
                                 lambda w, kv: w.write_u64(kv[0]).write_u64(kv[1]))


def read_txid_height(stream: WalletStream) -> Tuple[bytes, int]:
    """Read a (txid, u32 height) pair."""
    return stream.read_txid(), stream.read_u32()


def write_txid_height(writer: WalletStreamWriter, pair: Tuple[bytes, int]):
    txid, height = pair
    writer.write_bytes(txid).write_u32(height)


def txid_to_hex(txid: bytes) -> str:
    """Transaction ids are displayed byte-reversed, like block hashes."""
    return txid[::-1].hex()
