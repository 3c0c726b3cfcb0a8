"""Tests for zwl_data.py - blocks, options, price info and the verified tree."""
import pytest

from wallet_builders import h32, make_block, make_options, make_price_info
from zwl_data import (
    BlockData,
    ChainType,
    CommitmentTree,
    MemoDownloadOption,
    TreeState,
    VerifiedTree,
    WalletOptions,
    WalletZecPriceInfo,
)
from zwl_errors import InvalidFormat, UnsupportedVersion
from zwl_stream import WalletStream, WalletStreamWriter


def read_all(read_fn, data: bytes):
    stream = WalletStream(data)
    result = read_fn(stream)
    assert stream.is_at_end()
    return result


def sample_tree() -> CommitmentTree:
    return CommitmentTree(left=h32(0x01), right=None, parents=(None, h32(0x02)))


class TestCommitmentTree:
    """Test sapling commitment tree encoding."""

    def test_size_counts_leaves(self):
        assert sample_tree().size() == 5
        assert CommitmentTree().is_empty()

    def test_write_then_read(self):
        writer = WalletStreamWriter()
        sample_tree().write(writer)
        assert read_all(CommitmentTree.read, writer.getvalue()) == sample_tree()

    def test_right_without_left(self):
        data = b'\x00' + b'\x01' + h32(0x03) + bytes(8)
        with pytest.raises(InvalidFormat):
            read_all(CommitmentTree.read, data)


class TestBlockData:
    """Test cached block records."""

    def test_block_with_compact_bytes(self):
        block = read_all(BlockData.read, make_block(height=900, block_hash=bytes(range(32)),
                                                    ecb=b'\xca\xfe'))
        assert block.height == 900
        assert block.hash.startswith("1f1e")
        assert block.tree is None
        assert block.ecb == b'\xca\xfe'

    def test_old_block_has_no_compact_bytes(self):
        block = read_all(BlockData.read, make_block(version=11))
        assert block.ecb == b''


class TestWalletOptions:
    """Test the options section."""

    def test_current_version(self):
        options = read_all(WalletOptions.read, make_options(download_memos=2, spam_threshold=50))
        assert options.download_memos is MemoDownloadOption.ALL_MEMOS
        assert options.spam_threshold == 50

    def test_version_1_defaults_spam_threshold(self):
        options = read_all(WalletOptions.read, make_options(version=1, download_memos=0))
        assert options.download_memos is MemoDownloadOption.NO_MEMOS
        assert options.spam_threshold == -1

    def test_bad_memo_option(self):
        with pytest.raises(InvalidFormat):
            read_all(WalletOptions.read, make_options(download_memos=9))

    def test_version_too_new(self):
        with pytest.raises(UnsupportedVersion):
            read_all(WalletOptions.read, make_options(version=3))


class TestPriceInfo:
    """Test the price info section."""

    def test_empty_price_info(self):
        info = read_all(WalletZecPriceInfo.read, make_price_info())
        assert info.last_historical_prices_fetched_at is None
        assert info.currency == "USD"
        assert info.zec_price is None

    def test_fetch_time(self):
        info = read_all(WalletZecPriceInfo.read, make_price_info(fetched_at=1650000000, retry_count=2))
        assert info.last_historical_prices_fetched_at == 1650000000
        assert info.historical_prices_retry_count == 2


class TestVerifiedTree:
    """Test the protobuf tree state and the tree decoded from it."""

    def test_tree_state_round_trip(self):
        state = TreeState(network="main", height=1700000, hash="00ab", time=1650000000,
                          sapling_tree="", orchard_tree="01")
        assert TreeState.decode(state.encode()) == state

    def test_unknown_fields_skipped(self):
        state = TreeState(network="test", height=5)
        extra = bytes([(9 << 3) | 0, 0x96, 0x01]) + bytes([(10 << 3) | 2, 2]) + b'ab'
        assert TreeState.decode(state.encode() + extra) == state

    def test_truncated_field(self):
        with pytest.raises(InvalidFormat):
            TreeState.decode(bytes([(1 << 3) | 2, 10]) + b'main')

    def test_mismatched_wire_type(self):
        with pytest.raises(InvalidFormat):
            TreeState.decode(bytes([(2 << 3) | 2, 1]) + b'x')

    @pytest.mark.parametrize("tree_hex", [
        "000000",
        "01" + "ab" * 32 + "00" + "02" + "00" + "01" + "cd" * 32,
    ])
    def test_verified_tree_keeps_full_node_hex(self, tree_hex):
        state = TreeState(network="main", height=419200, sapling_tree=tree_hex, orchard_tree="000000")
        data = WalletStreamWriter().write_byte_vector(state.encode()).getvalue()

        verified = read_all(VerifiedTree.read, data)
        assert verified.height == 419200
        assert verified.sapling_tree == tree_hex
        assert verified.tree_state.orchard_tree == "000000"


class TestChainType:

    def test_known_names(self):
        assert ChainType.from_name("main") is ChainType.MAINNET
        assert ChainType.from_name("regtest") is ChainType.REGTEST
        assert ChainType.from_name("other") is None
