"""
ZecWallet Lite Wallet Reader
============================

Reads a whole zecwallet-light-wallet.dat file into a WalletSnapshot.

File Layout:
-----------
| Section        | Type                  | Notes                        |
|----------------|-----------------------|------------------------------|
| version        | u64                   | 15..25 accepted              |
| keys           | WalletKeys            | self-versioned               |
| blocks         | Vec<BlockData>        | newest first                 |
| transactions   | WalletTxns            | self-versioned               |
| chain_name     | String                | "main", "test" or "regtest"  |
| options        | WalletOptions         | self-versioned               |
| birthday       | u64                   | wallet birthday height       |
| verified_tree  | Option<VerifiedTree>  |                              |
| price          | WalletZecPriceInfo    | self-versioned               |
| orchard tree   | Option<BridgeTree>    | only when version > 24       |

Sections are read in this order on a single cursor. The first failure
aborts the read; no partial snapshot is ever returned.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from zwl_data import BlockData, ChainType, VerifiedTree, WalletOptions, WalletZecPriceInfo
from zwl_errors import LegacyVersionNotSupported, UnsupportedVersion, WalletIOError
from zwl_keys import WalletKeys
from zwl_merkle import BridgeTree, read_tree
from zwl_stream import WalletStream
from zwl_transactions import WalletTxns


logger = logging.getLogger(__name__)

MAX_WALLET_VERSION = 25
LEGACY_VERSION_CUTOFF = 14     # versions at or below this are not parsed
SPENDABLE_FIXUP_CUTOFF = 8     # versions at or below this recompute note spendability
ORCHARD_TREE_MIN_VERSION = 25


# =============================================================================
# Version Gate
# =============================================================================

def check_wallet_version(version: int) -> int:
    """
    Accept or reject an outer wallet version.

    Raises:
        UnsupportedVersion: If the version is newer than this reader
        LegacyVersionNotSupported: If the version uses the legacy layout
    """
    if version > MAX_WALLET_VERSION:
        raise UnsupportedVersion(version, MAX_WALLET_VERSION)
    if version <= LEGACY_VERSION_CUTOFF:
        raise LegacyVersionNotSupported(version)
    return version


def apply_legacy_fixups(version: int, keys: WalletKeys, blocks: List[BlockData],
                        txns: WalletTxns) -> Tuple[List[BlockData], WalletTxns]:
    """
    Apply the compatibility fixups older wallet generations need.

    Legacy wallets stored blocks oldest first, and wallets up to version 8
    did not record note spendability reliably. Returns the adjusted blocks
    and transactions; the inputs are left untouched.
    """
    if version <= LEGACY_VERSION_CUTOFF:
        blocks = list(reversed(blocks))

    if version <= SPENDABLE_FIXUP_CUTOFF:
        spendable = [extfvk for extfvk in keys.get_all_extfvks()
                     if keys.have_sapling_spending_key(extfvk)]
        logger.debug("recomputing note spendability against %d spendable keys", len(spendable))
        txns = txns.adjust_spendable_status(spendable)

    return blocks, txns


# =============================================================================
# Snapshot
# =============================================================================

@dataclass(frozen=True)
class WalletSnapshot:
    """Everything decoded from one wallet file"""
    version: int
    keys: WalletKeys
    blocks: Tuple[BlockData, ...]
    txns: WalletTxns
    chain_name: str
    options: WalletOptions
    birthday: int
    verified_tree: Optional[VerifiedTree]
    price_info: WalletZecPriceInfo
    orchard_witnesses: Optional[BridgeTree]

    @property
    def chain_type(self) -> Optional[ChainType]:
        return ChainType.from_name(self.chain_name)

    def keys_for_account(self, index: int) -> WalletKeys:
        return self.keys.keys_for_account(index)

    def estimated_balance(self) -> int:
        """Sum of unspent outputs across all pools, in zatoshis."""
        return sum(tx.unspent_value() for tx in self.txns)

    def block_height_range(self) -> Optional[Tuple[int, int]]:
        if not self.blocks:
            return None
        heights = [b.height for b in self.blocks]
        return min(heights), max(heights)

    def latest_sync_height(self) -> int:
        """Highest cached block height, or the birthday when nothing is cached."""
        height_range = self.block_height_range()
        return height_range[1] if height_range else self.birthday

    def describe(self, show_secrets: bool = False) -> List[str]:
        lines = [f"Wallet version: {self.version}",
                 f"Chain: {self.chain_name}",
                 f"Birthday: {self.birthday}",
                 f"Options: {self.options}"]
        height_range = self.block_height_range()
        if height_range:
            lines.append(f"Blocks cached: {len(self.blocks)} ({height_range[0]}..{height_range[1]})")
        else:
            lines.append("Blocks cached: 0")
        if self.verified_tree is not None:
            lines.append(f"Verified tree height: {self.verified_tree.tree_state.height}")
        if self.orchard_witnesses is not None:
            lines.append(f"Orchard witness checkpoints: {len(self.orchard_witnesses.checkpoints)}")
        lines.extend(self.keys.describe(show_secrets=show_secrets))
        lines.extend(self.txns.describe())
        return lines


# =============================================================================
# Reader
# =============================================================================

class WalletReader:
    """Sequential decoder for a full wallet file"""

    @classmethod
    def read(cls, path: str) -> WalletSnapshot:
        try:
            with open(path, 'rb') as f:
                data = f.read()
        except OSError as e:
            raise WalletIOError(f"Cannot read wallet file {path}: {e}") from e
        logger.info("read %d bytes from %s", len(data), path)
        return cls.read_bytes(data)

    @classmethod
    def read_bytes(cls, data: bytes) -> WalletSnapshot:
        return cls.read_from_stream(WalletStream(data))

    @classmethod
    def read_from_stream(cls, stream: WalletStream) -> WalletSnapshot:
        version = check_wallet_version(stream.read_u64())
        logger.info("wallet version %d", version)
        return cls.assemble(stream, version)

    @staticmethod
    def assemble(stream: WalletStream, version: int) -> WalletSnapshot:
        """
        Decode every section after the version tag.

        The version must already have passed the version gate; it selects
        the trailing orchard tree and the compatibility fixups.
        """
        keys = WalletKeys.read(stream)
        blocks = stream.read_vector(BlockData.read)
        logger.debug("blocks: %d", len(blocks))
        txns = WalletTxns.read(stream)
        chain_name = stream.read_string()
        options = WalletOptions.read(stream)
        birthday = stream.read_u64()
        verified_tree = stream.read_optional(VerifiedTree.read)
        price_info = WalletZecPriceInfo.read(stream)

        if version >= ORCHARD_TREE_MIN_VERSION:
            orchard_witnesses = stream.read_optional(read_tree)
        else:
            orchard_witnesses = None

        if not stream.is_at_end():
            logger.debug("ignoring %d trailing bytes at offset 0x%X", stream.remaining, stream.pos)

        blocks, txns = apply_legacy_fixups(version, keys, blocks, txns)

        return WalletSnapshot(version=version, keys=keys, blocks=tuple(blocks), txns=txns,
                              chain_name=chain_name, options=options, birthday=birthday,
                              verified_tree=verified_tree, price_info=price_info,
                              orchard_witnesses=orchard_witnesses)
