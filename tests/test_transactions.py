"""Tests for zwl_transactions.py - transaction ledger decoding."""
import pytest

from wallet_builders import (
    h32,
    make_orchard_note,
    make_sapling_note,
    make_txns,
    make_utxo,
    make_wallet_tx,
    make_witness,
)
from zwl_errors import InvalidFormat, UnsupportedVersion
from zwl_stream import WalletStream, WalletStreamWriter
from zwl_transactions import (
    Memo,
    MemoKind,
    OrchardNoteData,
    OutgoingTxMetadata,
    SaplingNoteData,
    Utxo,
    WalletTx,
    WalletTxns,
)


def read_all(read_fn, data: bytes):
    stream = WalletStream(data)
    result = read_fn(stream)
    assert stream.is_at_end()
    return result


class TestMemo:
    """Test memo classification and leniency."""

    def test_empty_memo(self):
        memo = Memo.from_bytes(b'\xF6' + bytes(511))
        assert memo.kind is MemoKind.EMPTY
        assert str(memo) == ""

    def test_text_memo(self):
        memo = Memo.from_bytes(b'thanks for lunch')
        assert memo.kind is MemoKind.TEXT
        assert memo.text == "thanks for lunch"
        assert len(memo.raw) == 512

    def test_arbitrary_memo(self):
        memo = Memo.from_bytes(b'\xFF' + b'\x01' * 511)
        assert memo.kind is MemoKind.ARBITRARY

    def test_bad_utf8_kept_as_future(self):
        raw = b'\xC3\x28' + bytes(510)
        memo = Memo.from_bytes(raw)
        assert memo.kind is MemoKind.FUTURE
        assert memo.raw == raw

    def test_reserved_lead_byte_kept_as_future(self):
        memo = Memo.from_bytes(b'\xF5hello' + bytes(506))
        assert memo.kind is MemoKind.FUTURE

    def test_text_too_long(self):
        with pytest.raises(InvalidFormat):
            Memo.from_text("x" * 513)


class TestWalletTx:
    """Test per-version field presence of transaction records."""

    def test_version_3_defaults_without_consuming_bytes(self):
        tx = read_all(WalletTx.read, make_wallet_tx(version=3, block=42, sapling_spent=10))

        assert tx.block == 42
        assert tx.unconfirmed is False
        assert tx.datetime == 0
        assert tx.zec_price is None
        assert tx.s_spent_nullifiers == ()
        assert tx.orchard_notes == ()
        assert tx.total_orchard_value_spent == 0
        assert tx.total_sapling_value_spent == 10

    def test_version_5_has_price_but_no_nullifiers(self):
        tx = read_all(WalletTx.read, make_wallet_tx(version=5, price=31.5))
        assert tx.datetime == 1600000000
        assert tx.zec_price == 31.5
        assert tx.s_spent_nullifiers == ()

    def test_version_23_all_fields(self):
        data = make_wallet_tx(version=23, unconfirmed=True, orchard_spent=1, sapling_spent=2,
                              transparent_spent=3, utxos=[make_utxo()],
                              sapling_notes=[make_sapling_note()])
        tx = read_all(WalletTx.read, data)

        assert tx.unconfirmed is True
        assert tx.total_funds_spent() == 6
        assert len(tx.utxos) == 1
        assert len(tx.sapling_notes) == 1
        assert tx.full_tx_scanned is True

    @pytest.mark.parametrize("version, unconfirmed, orchard_notes, orchard_spent", [
        (20, False, 0, 0),
        (21, True, 0, 0),
        (22, True, 1, 0),
        (23, True, 1, 9),
    ])
    def test_orchard_era_thresholds(self, version, unconfirmed, orchard_notes, orchard_spent):
        data = make_wallet_tx(version=version, unconfirmed=True, orchard_spent=9,
                              orchard_notes=[make_orchard_note()],
                              o_spent_nullifiers=[h32(0x71), h32(0x72)])
        tx = read_all(WalletTx.read, data)

        assert tx.unconfirmed is unconfirmed
        assert len(tx.orchard_notes) == orchard_notes
        assert len(tx.o_spent_nullifiers) == 2 * orchard_notes
        assert tx.total_orchard_value_spent == orchard_spent

    def test_orchard_nullifiers_kept_in_order(self):
        data = make_wallet_tx(version=22, o_spent_nullifiers=[h32(0x72), h32(0x71)])
        tx = read_all(WalletTx.read, data)
        assert tx.o_spent_nullifiers == (h32(0x72), h32(0x71))

    def test_version_too_new(self):
        with pytest.raises(UnsupportedVersion):
            read_all(WalletTx.read, make_wallet_tx(version=24))

    def test_write_then_read(self):
        tx = read_all(WalletTx.read, make_wallet_tx(version=6, price=20.0,
                                                     sapling_notes=[make_sapling_note(value=7)]))
        writer = WalletStreamWriter()
        tx.write(writer)
        assert read_all(WalletTx.read, writer.getvalue()) == tx

    def test_unspent_value(self):
        spent = (h32(0x01), 10)
        data = make_wallet_tx(sapling_notes=[make_sapling_note(value=7),
                                             make_sapling_note(value=100, spent=spent)],
                              utxos=[make_utxo(value=5)])
        assert read_all(WalletTx.read, data).unspent_value() == 12


class TestUtxo:
    """Test transparent output records."""

    def test_sub_version_1_round_trip(self):
        utxo = read_all(Utxo.read, make_utxo(spent=h32(0x09)))

        assert utxo.address == "t1Utxo"
        assert utxo.spent == h32(0x09)
        assert utxo.spent_at_height is None
        assert utxo.unconfirmed_spent is None

        writer = WalletStreamWriter()
        utxo.write(writer)
        assert read_all(Utxo.read, writer.getvalue()) == utxo

    def test_current_version_round_trip(self):
        utxo = Utxo(address="t1Full", txid=h32(0x02), output_index=3, script=b'\x00\x14',
                    value=99, height=500, spent=h32(0x03), spent_at_height=501,
                    unconfirmed_spent=(h32(0x04), 502))
        writer = WalletStreamWriter()
        utxo.write(writer)
        assert read_all(Utxo.read, writer.getvalue()) == utxo

    def test_sub_version_2_has_spent_height_only(self):
        utxo = read_all(Utxo.read, make_utxo(version=2, spent=h32(0x09), spent_at_height=555))

        assert utxo.spent == h32(0x09)
        assert utxo.spent_at_height == 555
        assert utxo.unconfirmed_spent is None

    def test_non_transparent_address(self):
        with pytest.raises(InvalidFormat):
            read_all(Utxo.read, make_utxo(address="zs1shielded"))


class TestNotes:
    """Test shielded note records."""

    def test_sapling_note(self):
        note = read_all(SaplingNoteData.read, make_sapling_note(value=1234, have_spending_key=False))
        assert note.value == 1234
        assert note.have_spending_key is False
        assert note.rseed.before_zip212 is False
        assert note.memo is None

    def test_sapling_note_before_top_height(self):
        note = read_all(SaplingNoteData.read, make_sapling_note(version=19))
        assert note.witnesses.top_height == 0

    def test_sapling_note_too_new(self):
        with pytest.raises(UnsupportedVersion):
            read_all(SaplingNoteData.read, make_sapling_note(version=21))

    def test_orchard_note(self):
        spent = (h32(0x0E), 2000000)
        note = read_all(OrchardNoteData.read, make_orchard_note(value=4321, spent=spent,
                                                                is_change=True))
        assert note.value == 4321
        assert note.fvk == b'\x22' * 96
        assert len(note.address) == 43
        assert note.witness_position == 7
        assert note.spent == spent
        assert note.unconfirmed_spent is None
        assert note.is_change is True
        assert note.have_spending_key is True

    def test_orchard_note_without_witness(self):
        note = read_all(OrchardNoteData.read, make_orchard_note(witness_position=None))
        assert note.witness_position is None

    def test_orchard_note_write_then_read(self):
        note = read_all(OrchardNoteData.read, make_orchard_note())
        writer = WalletStreamWriter()
        note.write(writer)
        assert read_all(OrchardNoteData.read, writer.getvalue()) == note

    def test_outgoing_metadata_round_trip(self):
        meta = OutgoingTxMetadata(address="zs1dest", value=50000, memo=Memo.from_text("hi"))
        writer = WalletStreamWriter()
        meta.write(writer)
        assert read_all(OutgoingTxMetadata.read, writer.getvalue()) == meta


class TestWalletTxns:
    """Test the ledger container."""

    def test_empty(self):
        txns = read_all(WalletTxns.read, make_txns())
        assert len(txns) == 0
        assert txns.last_txid is None

    def test_mempool_list_at_version_20(self):
        txns = read_all(WalletTxns.read, make_txns(version=20))
        assert txns.mempool == ()

    def test_version_too_new(self):
        with pytest.raises(UnsupportedVersion):
            read_all(WalletTxns.read, make_txns(version=22))

    def test_last_txid_and_lookup(self):
        a, b = h32(0xA1), h32(0xB2)
        data = make_txns([(a, make_wallet_tx(block=300, txid=a)),
                          (b, make_wallet_tx(block=200, txid=b))])
        txns = read_all(WalletTxns.read, data)

        assert txns.last_txid == a
        assert txns.get(b).block == 200
        assert txns.get(h32(0x00)) is None

    def test_adjust_spendable_status(self):
        own, other = b'\x11' * 169, b'\x22' * 169
        txid = h32(0xC3)
        data = make_txns([(txid, make_wallet_tx(txid=txid, sapling_notes=[
            make_sapling_note(extfvk=own),
            make_sapling_note(extfvk=other, witnesses=[make_witness(), make_witness()],
                              top_height=2100000),
        ]))])
        txns = read_all(WalletTxns.read, data)

        adjusted = txns.adjust_spendable_status([own])
        notes = adjusted.get(txid).sapling_notes
        assert notes[0].have_spending_key is True
        assert notes[1].have_spending_key is False
        assert len(notes[1].witnesses) == 0
        assert notes[1].witnesses.top_height == 2100000
        # original is untouched
        assert txns.get(txid).sapling_notes[1].have_spending_key is True
        assert len(txns.get(txid).sapling_notes[1].witnesses) == 2
