"""
Wallet Transaction Ledger
=========================

Decoder for the transaction section of a ZecWallet Lite wallet file.

Every record carries its own version, and field presence follows that
record-local version, never the outer wallet version.

WalletTx Field Presence:
-----------------------
| Field                    | Present when version >= | Default |
|--------------------------|-------------------------|---------|
| unconfirmed              | 21                      | False   |
| datetime                 | 4                       | 0       |
| total_orchard_value_spent| 23                      | 0       |
| zec_price                | 5                       | None    |
| s_spent_nullifiers       | 6                       | ()      |
| orchard_notes            | 22                      | ()      |
| o_spent_nullifiers       | 22                      | ()      |

All other fields are always present. Fields are read positionally in the
order of WalletTx.read, so the order there is part of the format.
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from zwl_data import IncrementalWitness
from zwl_errors import InvalidFormat, UnsupportedVersion
from zwl_stream import (
    WalletStream,
    WalletStreamWriter,
    read_txid_height,
    txid_to_hex,
    write_txid_height,
)


logger = logging.getLogger(__name__)

WALLET_TXNS_VERSION = 21
WALLET_TX_VERSION = 23
UTXO_VERSION = 3
SAPLING_NOTE_VERSION = 20
ORCHARD_NOTE_VERSION = 22

# WalletTx field thresholds (record-local version)
TX_UNCONFIRMED_MIN = 21
TX_DATETIME_MIN = 4
TX_ORCHARD_SPENT_MIN = 23
TX_PRICE_MIN = 5
TX_SAPLING_NULLIFIERS_MIN = 6
TX_ORCHARD_NOTES_MIN = 22
TX_ORCHARD_NULLIFIERS_MIN = 22

# Ledger versions at or below this also carry a mempool list
TXNS_MEMPOOL_MAX = 20

MEMO_SIZE = 512
NULLIFIER_SIZE = 32
SAPLING_EXTFVK_SIZE = 169
SAPLING_DIVERSIFIER_SIZE = 11
ORCHARD_FVK_SIZE = 96
ORCHARD_ADDRESS_SIZE = 43

Spend = Tuple[bytes, int]


# =============================================================================
# Memos
# =============================================================================

class MemoKind(Enum):
    EMPTY = "empty"
    TEXT = "text"
    ARBITRARY = "arbitrary"
    FUTURE = "future"


@dataclass(frozen=True)
class Memo:
    """
    A decoded 512-byte memo field.

    Memos that do not parse as a known kind keep their raw bytes as a
    FUTURE memo instead of failing the decode.
    """
    kind: MemoKind
    raw: bytes
    text: Optional[str] = None

    @classmethod
    def from_bytes(cls, raw: bytes) -> 'Memo':
        if len(raw) > MEMO_SIZE:
            raise InvalidFormat(f"Couldn't create memo: {len(raw)} bytes is longer than {MEMO_SIZE}")
        raw = raw.ljust(MEMO_SIZE, b'\x00')
        first = raw[0]

        if first == 0xF6 and not any(raw[1:]):
            return cls(MemoKind.EMPTY, raw)
        if first == 0xFF:
            return cls(MemoKind.ARBITRARY, raw)
        if first <= 0xF4:
            try:
                return cls(MemoKind.TEXT, raw, raw.rstrip(b'\x00').decode('utf-8'))
            except UnicodeDecodeError:
                pass
        return cls(MemoKind.FUTURE, raw)

    @classmethod
    def from_text(cls, text: str) -> 'Memo':
        encoded = text.encode('utf-8')
        if len(encoded) > MEMO_SIZE:
            raise InvalidFormat("memo text is longer than 512 bytes")
        return cls.from_bytes(encoded)

    @classmethod
    def read(cls, stream: WalletStream) -> 'Memo':
        return cls.from_bytes(stream.read_bytes(MEMO_SIZE))

    def write(self, writer: WalletStreamWriter):
        writer.write_bytes(self.raw)

    def __str__(self):
        if self.kind is MemoKind.TEXT:
            return self.text
        if self.kind is MemoKind.EMPTY:
            return ""
        return f"<{self.kind.value} memo {self.raw.rstrip(bytes(1)).hex()}>"


def _write_memo(writer: WalletStreamWriter, memo: Memo):
    memo.write(writer)


# =============================================================================
# Note Data
# =============================================================================

@dataclass(frozen=True)
class Rseed:
    """Note randomness; pre-ZIP-212 notes store r directly"""
    before_zip212: bool
    value: bytes


@dataclass(frozen=True)
class WitnessCache:
    witnesses: Tuple[IncrementalWitness, ...] = ()
    top_height: int = 0

    def __len__(self):
        return len(self.witnesses)


@dataclass(frozen=True)
class SaplingNoteData:
    extfvk: bytes
    diversifier: bytes
    value: int
    rseed: Rseed
    witnesses: WitnessCache
    nullifier: bytes
    spent: Optional[Spend]
    unconfirmed_spent: Optional[Spend]
    memo: Optional[Memo]
    is_change: bool
    have_spending_key: bool

    @classmethod
    def read(cls, stream: WalletStream) -> 'SaplingNoteData':
        version = stream.read_u64()
        if version > SAPLING_NOTE_VERSION:
            raise UnsupportedVersion(version, SAPLING_NOTE_VERSION, "sapling note")

        if version <= 5:
            stream.read_u64()  # account, unused

        extfvk = stream.read_bytes(SAPLING_EXTFVK_SIZE)
        diversifier = stream.read_bytes(SAPLING_DIVERSIFIER_SIZE)

        value = stream.read_u64()
        if version <= 3:
            rseed = Rseed(before_zip212=True, value=stream.read_bytes(32))
        else:
            note_type = stream.read_u8()
            rseed = Rseed(before_zip212=note_type == 1, value=stream.read_bytes(32))

        witnesses = stream.read_vector(IncrementalWitness.read)
        top_height = stream.read_u64() if version >= 20 else 0
        nullifier = stream.read_bytes(NULLIFIER_SIZE)

        if version <= 5:
            spent_txid = stream.read_optional(WalletStream.read_txid)
            spent_at_height = stream.read_optional(WalletStream.read_i32) if version >= 2 else None
            if spent_txid is not None and spent_at_height is not None:
                spent = (spent_txid, spent_at_height)
            else:
                spent = None
        else:
            spent = stream.read_optional(read_txid_height)

        unconfirmed_spent = stream.read_optional(read_txid_height) if version >= 5 else None
        memo = stream.read_optional(Memo.read)
        is_change = stream.read_flag()
        have_spending_key = stream.read_flag() if version >= 3 else True

        return cls(extfvk=extfvk, diversifier=diversifier, value=value, rseed=rseed,
                   witnesses=WitnessCache(tuple(witnesses), top_height), nullifier=nullifier,
                   spent=spent, unconfirmed_spent=unconfirmed_spent, memo=memo,
                   is_change=is_change, have_spending_key=have_spending_key)

    def write(self, writer: WalletStreamWriter):
        writer.write_u64(SAPLING_NOTE_VERSION)
        writer.write_bytes(self.extfvk)
        writer.write_bytes(self.diversifier)
        writer.write_u64(self.value)
        writer.write_u8(1 if self.rseed.before_zip212 else 2)
        writer.write_bytes(self.rseed.value)
        writer.write_vector(self.witnesses.witnesses, lambda w, wit: wit.write(w))
        writer.write_u64(self.witnesses.top_height)
        writer.write_bytes(self.nullifier)
        writer.write_optional(self.spent, write_txid_height)
        writer.write_optional(self.unconfirmed_spent, write_txid_height)
        writer.write_optional(self.memo, _write_memo)
        writer.write_flag(self.is_change)
        writer.write_flag(self.have_spending_key)


@dataclass(frozen=True)
class OrchardNoteData:
    fvk: bytes
    address: bytes
    value: int
    rho: bytes
    rseed: bytes
    witness_position: Optional[int]
    nullifier: bytes
    spent: Optional[Spend]
    unconfirmed_spent: Optional[Spend]
    memo: Optional[Memo]
    is_change: bool
    have_spending_key: bool

    @classmethod
    def read(cls, stream: WalletStream) -> 'OrchardNoteData':
        version = stream.read_u64()
        if version > ORCHARD_NOTE_VERSION:
            raise UnsupportedVersion(version, ORCHARD_NOTE_VERSION, "orchard note")

        fvk = stream.read_bytes(ORCHARD_FVK_SIZE)
        address = stream.read_bytes(ORCHARD_ADDRESS_SIZE)
        value = stream.read_u64()
        rho = stream.read_bytes(32)
        rseed = stream.read_bytes(32)
        witness_position = stream.read_optional(WalletStream.read_usize)
        nullifier = stream.read_bytes(NULLIFIER_SIZE)
        spent = stream.read_optional(read_txid_height)
        unconfirmed_spent = stream.read_optional(read_txid_height)
        memo = stream.read_optional(Memo.read)
        is_change = stream.read_flag()
        have_spending_key = stream.read_flag()

        return cls(fvk=fvk, address=address, value=value, rho=rho, rseed=rseed,
                   witness_position=witness_position, nullifier=nullifier, spent=spent,
                   unconfirmed_spent=unconfirmed_spent, memo=memo, is_change=is_change,
                   have_spending_key=have_spending_key)

    def write(self, writer: WalletStreamWriter):
        writer.write_u64(ORCHARD_NOTE_VERSION)
        writer.write_bytes(self.fvk)
        writer.write_bytes(self.address)
        writer.write_u64(self.value)
        writer.write_bytes(self.rho)
        writer.write_bytes(self.rseed)
        writer.write_optional(self.witness_position, WalletStreamWriter.write_u64)
        writer.write_bytes(self.nullifier)
        writer.write_optional(self.spent, write_txid_height)
        writer.write_optional(self.unconfirmed_spent, write_txid_height)
        writer.write_optional(self.memo, _write_memo)
        writer.write_flag(self.is_change)
        writer.write_flag(self.have_spending_key)


# =============================================================================
# Transparent Outputs
# =============================================================================

@dataclass(frozen=True)
class Utxo:
    address: str
    txid: bytes
    output_index: int
    script: bytes
    value: int
    height: int
    spent: Optional[bytes] = None
    spent_at_height: Optional[int] = None
    unconfirmed_spent: Optional[Spend] = None

    @classmethod
    def read(cls, stream: WalletStream) -> 'Utxo':
        """
        Decode one UTXO.

        spent_at_height needs sub-version 2 and unconfirmed_spent needs
        sub-version 3; older records leave them as None.
        """
        version = stream.read_u64()
        if version > UTXO_VERSION:
            raise UnsupportedVersion(version, UTXO_VERSION, "utxo")

        # The address is the one string in the file with an i32 length
        address_len = stream.read_i32()
        if address_len < 0:
            raise InvalidFormat(f"negative utxo address length {address_len}")
        try:
            address = stream.read_bytes(address_len).decode('utf-8')
        except UnicodeDecodeError as e:
            raise InvalidFormat(f"utxo address is not valid UTF-8: {e}")
        if not address.startswith('t'):
            raise InvalidFormat(f"utxo address {address!r} is not a transparent address")

        txid = stream.read_txid()
        output_index = stream.read_u64()
        value = stream.read_u64()
        height = stream.read_i32()
        script = stream.read_byte_vector()
        spent = stream.read_optional(WalletStream.read_txid)
        spent_at_height = stream.read_optional(WalletStream.read_i32) if version >= 2 else None
        unconfirmed_spent = stream.read_optional(read_txid_height) if version >= 3 else None

        return cls(address=address, txid=txid, output_index=output_index, script=script,
                   value=value, height=height, spent=spent, spent_at_height=spent_at_height,
                   unconfirmed_spent=unconfirmed_spent)

    def write(self, writer: WalletStreamWriter):
        writer.write_u64(UTXO_VERSION)
        raw_address = self.address.encode('utf-8')
        writer.write_u32(len(raw_address))
        writer.write_bytes(raw_address)
        writer.write_bytes(self.txid)
        writer.write_u64(self.output_index)
        writer.write_u64(self.value)
        writer.write_i32(self.height)
        writer.write_byte_vector(self.script)
        writer.write_optional(self.spent, WalletStreamWriter.write_bytes)
        writer.write_optional(self.spent_at_height, WalletStreamWriter.write_i32)
        writer.write_optional(self.unconfirmed_spent, write_txid_height)


@dataclass(frozen=True)
class OutgoingTxMetadata:
    address: str
    value: int
    memo: Memo

    @classmethod
    def read(cls, stream: WalletStream) -> 'OutgoingTxMetadata':
        address = stream.read_string()
        value = stream.read_u64()
        memo = Memo.read(stream)
        return cls(address=address, value=value, memo=memo)

    def write(self, writer: WalletStreamWriter):
        writer.write_string(self.address)
        writer.write_u64(self.value)
        self.memo.write(writer)


# =============================================================================
# Transactions
# =============================================================================

def _read_nullifier(stream: WalletStream) -> bytes:
    return stream.read_bytes(NULLIFIER_SIZE)


def _write_record(writer: WalletStreamWriter, record):
    record.write(writer)


@dataclass(frozen=True)
class WalletTx:
    block: int
    txid: bytes
    unconfirmed: bool = False
    datetime: int = 0
    sapling_notes: Tuple[SaplingNoteData, ...] = ()
    orchard_notes: Tuple[OrchardNoteData, ...] = ()
    utxos: Tuple[Utxo, ...] = ()
    s_spent_nullifiers: Tuple[bytes, ...] = ()
    o_spent_nullifiers: Tuple[bytes, ...] = ()
    total_orchard_value_spent: int = 0
    total_sapling_value_spent: int = 0
    total_transparent_value_spent: int = 0
    outgoing_metadata: Tuple[OutgoingTxMetadata, ...] = ()
    full_tx_scanned: bool = False
    zec_price: Optional[float] = None

    @classmethod
    def read(cls, stream: WalletStream) -> 'WalletTx':
        version = stream.read_u64()
        if version > WALLET_TX_VERSION:
            raise UnsupportedVersion(version, WALLET_TX_VERSION, "transaction")

        block = stream.read_i32()
        unconfirmed = stream.read_u8() == 1 if version >= TX_UNCONFIRMED_MIN else False
        datetime = stream.read_u64() if version >= TX_DATETIME_MIN else 0
        txid = stream.read_txid()

        sapling_notes = stream.read_vector(SaplingNoteData.read)
        utxos = stream.read_vector(Utxo.read)

        total_orchard_value_spent = stream.read_u64() if version >= TX_ORCHARD_SPENT_MIN else 0
        total_sapling_value_spent = stream.read_u64()
        total_transparent_value_spent = stream.read_u64()

        outgoing_metadata = stream.read_vector(OutgoingTxMetadata.read)
        full_tx_scanned = stream.read_flag()

        if version >= TX_PRICE_MIN:
            zec_price = stream.read_optional(WalletStream.read_f64)
        else:
            zec_price = None

        if version >= TX_SAPLING_NULLIFIERS_MIN:
            s_spent_nullifiers = stream.read_vector(_read_nullifier)
        else:
            s_spent_nullifiers = []

        orchard_notes = stream.read_vector(OrchardNoteData.read) if version >= TX_ORCHARD_NOTES_MIN else []

        if version >= TX_ORCHARD_NULLIFIERS_MIN:
            o_spent_nullifiers = stream.read_vector(_read_nullifier)
        else:
            o_spent_nullifiers = []

        return cls(block=block, txid=txid, unconfirmed=unconfirmed, datetime=datetime,
                   sapling_notes=tuple(sapling_notes), orchard_notes=tuple(orchard_notes),
                   utxos=tuple(utxos), s_spent_nullifiers=tuple(s_spent_nullifiers),
                   o_spent_nullifiers=tuple(o_spent_nullifiers),
                   total_orchard_value_spent=total_orchard_value_spent,
                   total_sapling_value_spent=total_sapling_value_spent,
                   total_transparent_value_spent=total_transparent_value_spent,
                   outgoing_metadata=tuple(outgoing_metadata),
                   full_tx_scanned=full_tx_scanned, zec_price=zec_price)

    def write(self, writer: WalletStreamWriter):
        """Encode at the current record version."""
        writer.write_u64(WALLET_TX_VERSION)
        writer.write_i32(self.block)
        writer.write_flag(self.unconfirmed)
        writer.write_u64(self.datetime)
        writer.write_bytes(self.txid)
        writer.write_vector(self.sapling_notes, _write_record)
        writer.write_vector(self.utxos, _write_record)
        writer.write_u64(self.total_orchard_value_spent)
        writer.write_u64(self.total_sapling_value_spent)
        writer.write_u64(self.total_transparent_value_spent)
        writer.write_vector(self.outgoing_metadata, _write_record)
        writer.write_flag(self.full_tx_scanned)
        writer.write_optional(self.zec_price, WalletStreamWriter.write_f64)
        writer.write_vector(self.s_spent_nullifiers, WalletStreamWriter.write_bytes)
        writer.write_vector(self.orchard_notes, _write_record)
        writer.write_vector(self.o_spent_nullifiers, WalletStreamWriter.write_bytes)

    def total_funds_spent(self) -> int:
        return (self.total_orchard_value_spent
                + self.total_sapling_value_spent
                + self.total_transparent_value_spent)

    def unspent_value(self) -> int:
        """Value of this transaction's outputs that the wallet has not spent."""
        total = sum(n.value for n in self.sapling_notes if n.spent is None)
        total += sum(n.value for n in self.orchard_notes if n.spent is None)
        total += sum(u.value for u in self.utxos if u.spent is None)
        return total


def _read_txid_entry(stream: WalletStream) -> WalletTx:
    # The txid is stored once as the entry key and again inside the record
    stream.read_txid()
    return WalletTx.read(stream)


@dataclass(frozen=True)
class WalletTxns:
    """All transactions known to the wallet, in file order"""
    current: Tuple[WalletTx, ...] = ()
    mempool: Tuple[WalletTx, ...] = ()

    @classmethod
    def read(cls, stream: WalletStream) -> 'WalletTxns':
        version = stream.read_u64()
        if version > WALLET_TXNS_VERSION:
            raise UnsupportedVersion(version, WALLET_TXNS_VERSION, "transaction list")

        current = stream.read_vector(_read_txid_entry)
        mempool = stream.read_vector(_read_txid_entry) if version <= TXNS_MEMPOOL_MAX else []

        logger.debug("transactions v%d: %d current, %d mempool", version, len(current), len(mempool))
        return cls(current=tuple(current), mempool=tuple(mempool))

    def __len__(self):
        return len(self.current)

    def __iter__(self):
        return iter(self.current)

    def get(self, txid: bytes) -> Optional[WalletTx]:
        for tx in self.current:
            if tx.txid == txid:
                return tx
        return None

    @property
    def last_txid(self) -> Optional[bytes]:
        """Txid of the transaction mined at the highest block."""
        best = None
        for tx in self.current:
            if best is None or tx.block > best.block:
                best = tx
        return best.txid if best else None

    def adjust_spendable_status(self, spendable_keys: Iterable[bytes]) -> 'WalletTxns':
        """
        Recompute have_spending_key on every Sapling note.

        A note is spendable when its viewing key is among spendable_keys.
        Notes that are not spendable lose their cached witnesses.
        """
        spendable = list(spendable_keys)

        def adjust(note: SaplingNoteData) -> SaplingNoteData:
            have = note.extfvk in spendable
            if have:
                return replace(note, have_spending_key=True)
            return replace(note, have_spending_key=False,
                           witnesses=replace(note.witnesses, witnesses=()))

        return replace(self, current=tuple(
            replace(tx, sapling_notes=tuple(adjust(n) for n in tx.sapling_notes))
            for tx in self.current
        ))

    def describe(self) -> List[str]:
        lines = [">> Transactions <<", f"Transactions found: {len(self.current)}"]
        for tx in sorted(self.current, key=lambda t: t.block):
            status = "unconfirmed" if tx.unconfirmed else f"block {tx.block}"
            lines.append(f"  {txid_to_hex(tx.txid)} ({status}) "
                         f"notes={len(tx.sapling_notes) + len(tx.orchard_notes)} "
                         f"utxos={len(tx.utxos)} spent={tx.total_funds_spent()}")
        return lines
