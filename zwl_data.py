"""
Flat Wallet Sections
====================

Decoders for the smaller sections that sit between the transaction ledger
and the orchard witness tree, plus the Sapling commitment-tree encodings
shared by blocks, note witnesses and the verified tree.

CommitmentTree Layout:
---------------------
| Field   | Type                 |
|---------|----------------------|
| left    | Option<[32]>         |
| right   | Option<[32]>         |
| parents | Vec<Option<[32]>>    |

TreeState (protobuf, from the lightwalletd service definition):
--------------------------------------------------------------
| Field | Name        | Wire type |
|-------|-------------|-----------|
| 1     | network     | bytes     |
| 2     | height      | varint    |
| 3     | hash        | bytes     |
| 4     | time        | varint    |
| 5     | saplingTree | bytes     |
| 6     | orchardTree | bytes     |
"""

import logging
import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Optional, Tuple

from zwl_errors import InvalidFormat, UnsupportedVersion
from zwl_stream import WalletStream, WalletStreamWriter


logger = logging.getLogger(__name__)

BLOCK_ECB_MIN_VERSION = 12
WALLET_OPTIONS_VERSION = 2
PRICE_INFO_VERSION = 20


# =============================================================================
# Sapling Commitment Trees
# =============================================================================

def _read_node(stream: WalletStream) -> bytes:
    return stream.read_hash()


def _write_node(writer: WalletStreamWriter, node: bytes):
    writer.write_bytes(node)


@dataclass(frozen=True)
class CommitmentTree:
    """Incremental Sapling note commitment tree"""
    left: Optional[bytes] = None
    right: Optional[bytes] = None
    parents: Tuple[Optional[bytes], ...] = ()

    @classmethod
    def read(cls, stream: WalletStream) -> 'CommitmentTree':
        left = stream.read_optional(_read_node)
        right = stream.read_optional(_read_node)
        parents = stream.read_vector(lambda s: s.read_optional(_read_node))
        if left is None and right is not None:
            raise InvalidFormat("commitment tree has a right leaf without a left leaf")
        return cls(left=left, right=right, parents=tuple(parents))

    def write(self, writer: WalletStreamWriter):
        writer.write_optional(self.left, _write_node)
        writer.write_optional(self.right, _write_node)
        writer.write_vector(self.parents, lambda w, p: w.write_optional(p, _write_node))

    def size(self) -> int:
        """Number of leaves appended to the tree."""
        count = (1 if self.left is not None else 0) + (1 if self.right is not None else 0)
        for i, parent in enumerate(self.parents):
            if parent is not None:
                count += 1 << (i + 1)
        return count

    def is_empty(self) -> bool:
        return self.size() == 0


@dataclass(frozen=True)
class IncrementalWitness:
    """Authentication path tracker for one Sapling note"""
    tree: CommitmentTree
    filled: Tuple[bytes, ...]
    cursor: Optional[CommitmentTree]

    @classmethod
    def read(cls, stream: WalletStream) -> 'IncrementalWitness':
        tree = CommitmentTree.read(stream)
        filled = stream.read_vector(_read_node)
        cursor = stream.read_optional(CommitmentTree.read)
        return cls(tree=tree, filled=tuple(filled), cursor=cursor)

    def write(self, writer: WalletStreamWriter):
        self.tree.write(writer)
        writer.write_vector(self.filled, _write_node)
        writer.write_optional(self.cursor, lambda w, c: c.write(w))


# =============================================================================
# Blocks
# =============================================================================

@dataclass(frozen=True)
class BlockData:
    """Cached compact block kept for reorg handling"""
    height: int
    hash: str
    tree: Optional[CommitmentTree]
    ecb: bytes

    @classmethod
    def read(cls, stream: WalletStream) -> 'BlockData':
        height = stream.read_i32()
        hash_bytes = stream.read_hash()

        # An empty tree is always written here; the block version comes after it
        tree = CommitmentTree.read(stream)
        version = stream.read_u64()
        ecb = stream.read_byte_vector() if version >= BLOCK_ECB_MIN_VERSION else b''

        return cls(height=height, hash=hash_bytes[::-1].hex(),
                   tree=None if tree.is_empty() else tree, ecb=ecb)


# =============================================================================
# Wallet Options
# =============================================================================

class MemoDownloadOption(IntEnum):
    NO_MEMOS = 0
    WALLET_MEMOS = 1
    ALL_MEMOS = 2


@dataclass(frozen=True)
class WalletOptions:
    download_memos: MemoDownloadOption = MemoDownloadOption.WALLET_MEMOS
    spam_threshold: int = -1

    @classmethod
    def read(cls, stream: WalletStream) -> 'WalletOptions':
        version = stream.read_u64()
        if version > WALLET_OPTIONS_VERSION:
            raise UnsupportedVersion(version, WALLET_OPTIONS_VERSION, "wallet options")

        code = stream.read_u8()
        try:
            download_memos = MemoDownloadOption(code)
        except ValueError:
            raise InvalidFormat(f"bad memo download option {code}")

        spam_threshold = stream.read_i64() if version >= 2 else -1
        return cls(download_memos=download_memos, spam_threshold=spam_threshold)

    def __str__(self):
        return f"download_memos={self.download_memos.name}, spam_threshold={self.spam_threshold}"


# =============================================================================
# Price Info
# =============================================================================

@dataclass(frozen=True)
class WalletZecPriceInfo:
    """Historical price bookkeeping; the current price is never persisted"""
    last_historical_prices_fetched_at: Optional[int] = None
    historical_prices_retry_count: int = 0
    currency: str = "USD"
    zec_price: Optional[Tuple[int, float]] = None

    @classmethod
    def read(cls, stream: WalletStream) -> 'WalletZecPriceInfo':
        version = stream.read_u64()
        if version > PRICE_INFO_VERSION:
            raise UnsupportedVersion(version, PRICE_INFO_VERSION, "price info")

        fetched_at = stream.read_optional(WalletStream.read_u64)
        retry_count = stream.read_u64()
        return cls(last_historical_prices_fetched_at=fetched_at,
                   historical_prices_retry_count=retry_count)


# =============================================================================
# Verified Tree (protobuf TreeState)
# =============================================================================

def _read_varint(data: bytes, pos: int) -> Tuple[int, int]:
    """Decode a base-128 varint, returning (value, new_pos)."""
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise InvalidFormat("Read Error: truncated varint in tree state")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, pos
        shift += 7
        if shift >= 64:
            raise InvalidFormat("Read Error: varint overflow in tree state")


def _encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


# Field number -> (attribute, wire type)
TREE_STATE_FIELDS = {
    1: ('network', 2),
    2: ('height', 0),
    3: ('hash', 2),
    4: ('time', 0),
    5: ('sapling_tree', 2),
    6: ('orchard_tree', 2),
}


@dataclass(frozen=True)
class TreeState:
    """Chain state reported by the light wallet server at a block"""
    network: str = ""
    height: int = 0
    hash: str = ""
    time: int = 0
    sapling_tree: str = ""
    orchard_tree: str = ""

    @classmethod
    def decode(cls, data: bytes) -> 'TreeState':
        """
        Decode a protobuf-encoded TreeState message.

        Unknown fields are skipped by wire type; a field with a mismatched
        wire type or a truncated payload fails the decode.
        """
        values = {}
        pos = 0
        while pos < len(data):
            key, pos = _read_varint(data, pos)
            field_num, wire_type = key >> 3, key & 0x07

            if wire_type == 0:
                value, pos = _read_varint(data, pos)
            elif wire_type == 1:
                if pos + 8 > len(data):
                    raise InvalidFormat("Read Error: truncated fixed64 in tree state")
                value = struct.unpack('<Q', data[pos:pos + 8])[0]
                pos += 8
            elif wire_type == 2:
                length, pos = _read_varint(data, pos)
                if pos + length > len(data):
                    raise InvalidFormat("Read Error: truncated field in tree state")
                value = data[pos:pos + length]
                pos += length
            elif wire_type == 5:
                if pos + 4 > len(data):
                    raise InvalidFormat("Read Error: truncated fixed32 in tree state")
                value = struct.unpack('<I', data[pos:pos + 4])[0]
                pos += 4
            else:
                raise InvalidFormat(f"Read Error: invalid wire type {wire_type} in tree state")

            known = TREE_STATE_FIELDS.get(field_num)
            if known is None:
                continue
            name, expected_wire = known
            if wire_type != expected_wire:
                raise InvalidFormat(f"Read Error: field {name} has wire type {wire_type}")
            if wire_type == 2:
                try:
                    value = value.decode('utf-8')
                except UnicodeDecodeError as e:
                    raise InvalidFormat(f"Read Error: field {name} is not valid UTF-8: {e}")
            values[name] = value

        return cls(**values)

    def encode(self) -> bytes:
        out = bytearray()
        for field_num, (name, wire_type) in TREE_STATE_FIELDS.items():
            value = getattr(self, name)
            # proto3 omits default values
            if not value:
                continue
            out += _encode_varint((field_num << 3) | wire_type)
            if wire_type == 0:
                out += _encode_varint(value)
            else:
                raw = value.encode('utf-8')
                out += _encode_varint(len(raw)) + raw
        return bytes(out)


@dataclass(frozen=True)
class VerifiedTree:
    """
    Last chain state the wallet verified against the server.

    The tree fields stay as the hex strings the server sent; their
    encoding is the full node's, not the wallet file's.
    """
    tree_state: TreeState

    @classmethod
    def read(cls, stream: WalletStream) -> 'VerifiedTree':
        tree_state = TreeState.decode(stream.read_byte_vector())
        logger.debug("verified tree at height %d", tree_state.height)
        return cls(tree_state=tree_state)

    @property
    def height(self) -> int:
        return self.tree_state.height

    @property
    def sapling_tree(self) -> str:
        return self.tree_state.sapling_tree


# =============================================================================
# Chain
# =============================================================================

class ChainType(Enum):
    MAINNET = "main"
    TESTNET = "test"
    REGTEST = "regtest"

    @classmethod
    def from_name(cls, name: str) -> Optional['ChainType']:
        for chain in cls:
            if chain.value == name:
                return chain
        return None
