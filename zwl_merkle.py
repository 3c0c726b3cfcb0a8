"""
Orchard Witness Tree
====================

Decoder for the bridge tree that tracks Orchard note commitment witnesses.
It is the last section of the wallet file and is present only for wallet
versions above 24.

Tree Layout:
-----------
| Field            | Type                    | Notes                      |
|------------------|-------------------------|----------------------------|
| tag              | u8                      | must be SER_V1             |
| prior_bridges    | Vec<Bridge>             | in position order          |
| current_bridge   | Option<Bridge>          |                            |
| saved            | Vec<(u64, u64)>         | leaf position -> bridge slot |
| checkpoints      | Vec<Checkpoint>         |                            |
| max_checkpoints  | u64                     | must fit a usize           |

Bridge Layout:
-------------
| Field          | Type                        |
|----------------|-----------------------------|
| tag            | u8 (SER_V1)                 |
| prior_position | Option<u64>                 |
| auth_fragments | Vec<(u64, AuthFragment)>    |
| frontier       | NonEmptyFrontier            |

Bridges and checkpoints refer to each other only through positions and
slot indices; the whole structure is validated once every field is read.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from zwl_errors import InvalidFormat
from zwl_stream import WalletStream


logger = logging.getLogger(__name__)

SER_V1 = 1


class TreeConsistencyError(Exception):
    """Bridges, checkpoints and saved positions do not agree"""


def _read_ser_tag(stream: WalletStream, what: str):
    tag = stream.read_u8()
    if tag != SER_V1:
        raise InvalidFormat(f"unrecognized serialization version {tag} for {what}")


# =============================================================================
# Frontier Pieces
# =============================================================================

@dataclass(frozen=True)
class AuthFragment:
    """Authentication path nodes observed for a marked leaf"""
    position: int
    alts_observed: int
    values: Tuple[bytes, ...]

    @classmethod
    def read(cls, stream: WalletStream) -> 'AuthFragment':
        position = stream.read_usize()
        alts_observed = stream.read_usize()
        values = stream.read_vector(WalletStream.read_hash)
        return cls(position=position, alts_observed=alts_observed, values=tuple(values))


@dataclass(frozen=True)
class Leaf:
    left: bytes
    right: Optional[bytes] = None

    @property
    def is_pair(self) -> bool:
        return self.right is not None


def _ommer_count(position: int) -> int:
    return bin(position >> 1).count('1')


@dataclass(frozen=True)
class NonEmptyFrontier:
    """Rightmost leaf of the tree plus the ommers needed to rebuild the root"""
    position: int
    leaf: Leaf
    ommers: Tuple[bytes, ...]

    @classmethod
    def from_parts(cls, position: int, leaf: Leaf, ommers) -> 'NonEmptyFrontier':
        """
        Build a frontier, checking that its shape matches its position.

        Raises:
            InvalidFormat: If the leaf shape or ommer count is wrong
        """
        if position % 2 == 0 and leaf.is_pair:
            raise InvalidFormat(f"frontier at even position {position} holds a leaf pair")
        if position % 2 == 1 and not leaf.is_pair:
            raise InvalidFormat(f"frontier at odd position {position} holds a single leaf")

        expected = _ommer_count(position)
        if len(ommers) != expected:
            raise InvalidFormat(
                f"frontier at position {position} has {len(ommers)} ommers, expected {expected}"
            )
        return cls(position=position, leaf=leaf, ommers=tuple(ommers))

    @classmethod
    def read(cls, stream: WalletStream) -> 'NonEmptyFrontier':
        position = stream.read_usize()
        left = stream.read_hash()
        right = stream.read_optional(WalletStream.read_hash)
        ommers = stream.read_vector(WalletStream.read_hash)
        return cls.from_parts(position, Leaf(left, right), ommers)


# =============================================================================
# Bridges and Checkpoints
# =============================================================================

@dataclass(frozen=True)
class MerkleBridge:
    prior_position: Optional[int]
    auth_fragments: Dict[int, AuthFragment]
    frontier: NonEmptyFrontier

    @classmethod
    def read(cls, stream: WalletStream) -> 'MerkleBridge':
        _read_ser_tag(stream, "bridge")
        prior_position = stream.read_optional(WalletStream.read_usize)
        fragments = stream.read_vector(lambda s: (s.read_usize(), AuthFragment.read(s)))
        frontier = NonEmptyFrontier.read(stream)
        return cls(prior_position=prior_position,
                   auth_fragments=dict(sorted(fragments, key=lambda kv: kv[0])),
                   frontier=frontier)

    @property
    def position(self) -> int:
        return self.frontier.position

    def can_follow(self, prev: 'MerkleBridge') -> bool:
        return self.prior_position == prev.position


@dataclass(frozen=True)
class Checkpoint:
    """
    A rewind point in the tree.

    The id orders checkpoints but carries no block height meaning.
    """
    id: int
    is_marked: bool
    marked: Tuple[int, ...]
    forgotten: Dict[int, int]

    @classmethod
    def read(cls, stream: WalletStream) -> 'Checkpoint':
        checkpoint_id = stream.read_usize()
        is_marked = stream.read_u8() == 1
        marked = stream.read_vector(WalletStream.read_usize)
        forgotten = stream.read_position_map()
        return cls(id=checkpoint_id, is_marked=is_marked,
                   marked=tuple(sorted(set(marked))), forgotten=forgotten)


# =============================================================================
# Bridge Tree
# =============================================================================

@dataclass(frozen=True)
class BridgeTree:
    prior_bridges: Tuple[MerkleBridge, ...]
    current_bridge: Optional[MerkleBridge]
    saved: Dict[int, int]
    checkpoints: Tuple[Checkpoint, ...]
    max_checkpoints: int

    @classmethod
    def from_parts(cls, prior_bridges, current_bridge, saved, checkpoints,
                   max_checkpoints) -> 'BridgeTree':
        """
        Assemble a tree from decoded parts.

        Raises:
            TreeConsistencyError: If the parts reference each other inconsistently
        """
        prev = None
        for i, bridge in enumerate(prior_bridges):
            if bridge.prior_position is not None and bridge.position < bridge.prior_position:
                raise TreeConsistencyError(
                    f"bridge {i} frontier {bridge.position} precedes its prior position "
                    f"{bridge.prior_position}"
                )
            if prev is not None and not bridge.can_follow(prev):
                raise TreeConsistencyError(
                    f"bridge {i} prior position {bridge.prior_position} does not match "
                    f"previous frontier {prev.position}"
                )
            prev = bridge

        if current_bridge is not None:
            if (current_bridge.prior_position is not None
                    and current_bridge.position < current_bridge.prior_position):
                raise TreeConsistencyError("current bridge frontier precedes its prior position")
            if prev is not None and not current_bridge.can_follow(prev):
                raise TreeConsistencyError(
                    f"current bridge prior position {current_bridge.prior_position} does not "
                    f"match last frontier {prev.position}"
                )

        for position, slot in saved.items():
            if slot >= len(prior_bridges):
                raise TreeConsistencyError(
                    f"saved position {position} refers to missing bridge {slot}"
                )
            if prior_bridges[slot].position != position:
                raise TreeConsistencyError(
                    f"saved position {position} does not match bridge {slot} frontier "
                    f"{prior_bridges[slot].position}"
                )

        if len(checkpoints) > max_checkpoints:
            raise TreeConsistencyError(
                f"{len(checkpoints)} checkpoints exceed the maximum of {max_checkpoints}"
            )
        last_id = None
        for checkpoint in checkpoints:
            if last_id is not None and checkpoint.id < last_id:
                raise TreeConsistencyError(
                    f"checkpoint {checkpoint.id} is out of order after {last_id}"
                )
            if checkpoint.id > len(prior_bridges):
                raise TreeConsistencyError(
                    f"checkpoint {checkpoint.id} refers past {len(prior_bridges)} bridges"
                )
            last_id = checkpoint.id

        return cls(prior_bridges=tuple(prior_bridges), current_bridge=current_bridge,
                   saved=dict(saved), checkpoints=tuple(checkpoints),
                   max_checkpoints=max_checkpoints)

    def current_position(self) -> Optional[int]:
        if self.current_bridge is not None:
            return self.current_bridge.position
        if self.prior_bridges:
            return self.prior_bridges[-1].position
        return None


def read_tree(stream: WalletStream) -> BridgeTree:
    """
    Decode and validate an Orchard bridge tree.

    Raises:
        InvalidFormat: On an unknown serialization tag, a malformed frontier,
            or parts that are not mutually consistent
    """
    _read_ser_tag(stream, "bridge tree")

    prior_bridges = stream.read_vector(MerkleBridge.read)
    current_bridge = stream.read_optional(MerkleBridge.read)
    saved = stream.read_position_map()
    checkpoints = stream.read_vector(Checkpoint.read)
    max_checkpoints = stream.read_usize()

    try:
        tree = BridgeTree.from_parts(prior_bridges, current_bridge, saved, checkpoints,
                                     max_checkpoints)
    except TreeConsistencyError as e:
        raise InvalidFormat(f"Consistency violation: {e}") from e

    logger.debug("bridge tree: %d bridges, %d saved, %d checkpoints",
                 len(tree.prior_bridges), len(tree.saved), len(tree.checkpoints))
    return tree
