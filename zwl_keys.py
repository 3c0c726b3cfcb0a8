"""
Wallet Key Bundle
=================

Decoder for the key section of a ZecWallet Lite wallet file.

Section Layout:
--------------
| Field          | Type                 | Notes                              |
|----------------|----------------------|------------------------------------|
| version        | u64                  | max 22                             |
| encrypted      | u8                   | > 0 when the wallet is locked      |
| enc_seed       | 48 bytes             | meaningful only when locked        |
| nonce          | Vec<u8>              | encryption nonce                   |
| seed           | 32 bytes             | meaningful only when unlocked      |
| orchard keys   | Vec<OrchardKey>      | only when version > 21             |
| sapling keys   | Vec<SaplingKey>      |                                    |
| transparent    | Vec<TransparentKey>  |                                    |

Each key record carries its own u8 version (max 1) and a u32 key type code.
The key type and the optional HD index are folded into one origin value:
HdDerived(index), Imported or ViewingOnly.
"""

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple, Union

from zwl_errors import InvalidFormat, UnsupportedVersion
from zwl_stream import WalletStream


logger = logging.getLogger(__name__)

KEYS_SERIALIZED_VERSION = 22
KEY_RECORD_VERSION = 1

# Keys section versions at or below this carry no orchard keys
ORCHARD_KEYS_MIN_VERSION = 22

ENC_SEED_SIZE = 48
SEED_SIZE = 32
TRANSPARENT_SECRET_SIZE = 32
SAPLING_EXTENDED_KEY_SIZE = 169   # depth 1 + tag 4 + child 4 + chain code 32 + key 96 + dk 32
ORCHARD_FVK_SIZE = 96
ORCHARD_SK_SIZE = 32


# =============================================================================
# Key Origins
# =============================================================================

@dataclass(frozen=True)
class HdDerived:
    """Key derived from the wallet seed at a ZIP-32 account index"""
    index: int


@dataclass(frozen=True)
class Imported:
    """Key imported together with its spending secret"""


@dataclass(frozen=True)
class ViewingOnly:
    """Imported viewing key with no spending authority"""


KeyOrigin = Union[HdDerived, Imported, ViewingOnly]

# Per-pool key type codes
TRANSPARENT_KEY_TYPES = {0: HdDerived, 1: Imported}
SHIELDED_KEY_TYPES = {0: HdDerived, 1: Imported, 2: ViewingOnly}


def make_origin(pool: str, type_code: int, hdkey_num: Optional[int]) -> KeyOrigin:
    """
    Build a key origin from the stored type code and optional HD index.

    An HD key must carry an index and no other kind may carry one.
    """
    table = TRANSPARENT_KEY_TYPES if pool == "transparent" else SHIELDED_KEY_TYPES
    kind = table.get(type_code)
    if kind is None:
        raise InvalidFormat(f"unknown {pool} key type {type_code}")

    if kind is HdDerived:
        if hdkey_num is None:
            raise InvalidFormat(f"{pool} HD key has no derivation index")
        return HdDerived(hdkey_num)

    if hdkey_num is not None:
        raise InvalidFormat(f"{pool} {kind.__name__} key carries derivation index {hdkey_num}")
    return kind()


def origin_label(origin: KeyOrigin) -> str:
    if isinstance(origin, HdDerived):
        return f"HD #{origin.index}"
    if isinstance(origin, Imported):
        return "Imported"
    return "Viewing only"


def _read_record_version(stream: WalletStream, pool: str) -> int:
    version = stream.read_u8()
    if version > KEY_RECORD_VERSION:
        raise UnsupportedVersion(version, KEY_RECORD_VERSION, f"{pool} key")
    return version


def _read_enc_parts(stream: WalletStream) -> Tuple[Optional[bytes], Optional[bytes]]:
    enc_key = stream.read_optional(WalletStream.read_byte_vector)
    nonce = stream.read_optional(WalletStream.read_byte_vector)
    return enc_key, nonce


# =============================================================================
# Key Records
# =============================================================================

@dataclass(frozen=True)
class _KeyRecord:
    origin: KeyOrigin
    locked: bool
    enc_key: Optional[bytes]
    nonce: Optional[bytes]

    @property
    def hdkey_num(self) -> Optional[int]:
        return self.origin.index if isinstance(self.origin, HdDerived) else None

    def _check_secret(self, pool: str, secret: Optional[bytes]):
        if isinstance(self.origin, ViewingOnly) and (secret is not None or self.enc_key is not None):
            raise InvalidFormat(f"{pool} viewing-only key carries spending material")


@dataclass(frozen=True)
class TransparentKey(_KeyRecord):
    address: str
    secret_key: Optional[bytes]

    @classmethod
    def read(cls, stream: WalletStream) -> 'TransparentKey':
        _read_record_version(stream, "transparent")
        type_code = stream.read_u32()
        locked = stream.read_flag()
        secret_key = stream.read_optional(lambda s: s.read_bytes(TRANSPARENT_SECRET_SIZE))
        address = stream.read_string()
        hdkey_num = stream.read_optional(WalletStream.read_u32)
        enc_key, nonce = _read_enc_parts(stream)

        key = cls(origin=make_origin("transparent", type_code, hdkey_num), locked=locked,
                  enc_key=enc_key, nonce=nonce, address=address, secret_key=secret_key)
        key._check_secret("transparent", secret_key)
        return key

    def have_spending_key(self) -> bool:
        return self.secret_key is not None or self.enc_key is not None


@dataclass(frozen=True)
class SaplingKey(_KeyRecord):
    extfvk: bytes
    extsk: Optional[bytes]

    @classmethod
    def read(cls, stream: WalletStream) -> 'SaplingKey':
        _read_record_version(stream, "sapling")
        type_code = stream.read_u32()
        locked = stream.read_flag()
        extsk = stream.read_optional(lambda s: s.read_bytes(SAPLING_EXTENDED_KEY_SIZE))
        extfvk = stream.read_bytes(SAPLING_EXTENDED_KEY_SIZE)
        hdkey_num = stream.read_optional(WalletStream.read_u32)
        enc_key, nonce = _read_enc_parts(stream)

        key = cls(origin=make_origin("sapling", type_code, hdkey_num), locked=locked,
                  enc_key=enc_key, nonce=nonce, extfvk=extfvk, extsk=extsk)
        key._check_secret("sapling", extsk)
        return key

    def have_spending_key(self) -> bool:
        """HD keys can always be re-derived from the seed."""
        return self.extsk is not None or self.enc_key is not None or self.hdkey_num is not None


@dataclass(frozen=True)
class OrchardKey(_KeyRecord):
    fvk: bytes
    sk: Optional[bytes]

    @classmethod
    def read(cls, stream: WalletStream) -> 'OrchardKey':
        _read_record_version(stream, "orchard")
        type_code = stream.read_u32()
        locked = stream.read_flag()
        hdkey_num = stream.read_optional(WalletStream.read_u32)
        fvk = stream.read_bytes(ORCHARD_FVK_SIZE)
        sk = stream.read_optional(lambda s: s.read_bytes(ORCHARD_SK_SIZE))
        enc_key, nonce = _read_enc_parts(stream)

        key = cls(origin=make_origin("orchard", type_code, hdkey_num), locked=locked,
                  enc_key=enc_key, nonce=nonce, fvk=fvk, sk=sk)
        key._check_secret("orchard", sk)
        return key

    def have_spending_key(self) -> bool:
        return self.sk is not None or self.enc_key is not None or self.hdkey_num is not None


# =============================================================================
# Key Bundle
# =============================================================================

@dataclass(frozen=True)
class WalletKeys:
    """All keys held by the wallet, one tuple per pool"""
    version: int
    encrypted: bool
    enc_seed: bytes
    nonce: bytes
    seed: bytes
    okeys: Tuple[OrchardKey, ...]
    zkeys: Tuple[SaplingKey, ...]
    tkeys: Tuple[TransparentKey, ...]

    @classmethod
    def read(cls, stream: WalletStream) -> 'WalletKeys':
        """
        Decode the key section.

        Raises:
            UnsupportedVersion: If the section version is above 22
            InvalidFormat: If a key record breaks the origin invariants
        """
        version = stream.read_u64()
        if version > KEYS_SERIALIZED_VERSION:
            raise UnsupportedVersion(version, KEYS_SERIALIZED_VERSION, "keys")

        encrypted = stream.read_flag()
        enc_seed = stream.read_bytes(ENC_SEED_SIZE)
        nonce = stream.read_byte_vector()
        seed = stream.read_bytes(SEED_SIZE)

        if version < ORCHARD_KEYS_MIN_VERSION:
            okeys = []
        else:
            okeys = stream.read_vector(OrchardKey.read)
        zkeys = stream.read_vector(SaplingKey.read)
        tkeys = stream.read_vector(TransparentKey.read)

        logger.debug("keys v%d: encrypted=%s orchard=%d sapling=%d transparent=%d",
                     version, encrypted, len(okeys), len(zkeys), len(tkeys))

        return cls(version=version, encrypted=encrypted, enc_seed=enc_seed, nonce=nonce,
                   seed=seed, okeys=tuple(okeys), zkeys=tuple(zkeys), tkeys=tuple(tkeys))

    @property
    def clear_seed(self) -> Optional[bytes]:
        """The stored seed, or None when the wallet is locked."""
        return None if self.encrypted else self.seed

    @property
    def key_count(self) -> int:
        return len(self.okeys) + len(self.zkeys) + len(self.tkeys)

    def pool_counts(self) -> Dict[str, int]:
        return {
            "orchard": len(self.okeys),
            "sapling": len(self.zkeys),
            "transparent": len(self.tkeys),
        }

    def get_all_extfvks(self) -> List[bytes]:
        return [zk.extfvk for zk in self.zkeys]

    def have_sapling_spending_key(self, extfvk: bytes) -> bool:
        for zk in self.zkeys:
            if zk.extfvk == extfvk:
                return zk.have_spending_key()
        return False

    def keys_for_account(self, index: int) -> 'WalletKeys':
        """Return a copy holding only the keys HD-derived at the given index."""
        return replace(
            self,
            okeys=tuple(k for k in self.okeys if k.hdkey_num == index),
            zkeys=tuple(k for k in self.zkeys if k.hdkey_num == index),
            tkeys=tuple(k for k in self.tkeys if k.hdkey_num == index),
        )

    def describe(self, show_secrets: bool = False) -> List[str]:
        lines = [">> Keys <<",
                 f"Version: {self.version}",
                 f"Encrypted: {self.encrypted}"]
        if show_secrets:
            if self.encrypted:
                lines.append(f"Encrypted seed: {self.enc_seed.hex()}")
                lines.append(f"Nonce: {self.nonce.hex()}")
            else:
                lines.append(f"Seed: {self.seed.hex()}")

        lines.append("=== ORCHARD ===")
        lines.append(f"Orchard keys found: {len(self.okeys)}")
        for okey in self.okeys:
            lines.append(f"  {origin_label(okey.origin):14s} fvk={okey.fvk[:8].hex()}... "
                         f"spend={okey.have_spending_key()}")

        lines.append("=== SAPLING ===")
        lines.append(f"Sapling keys found: {len(self.zkeys)}")
        for zkey in self.zkeys:
            lines.append(f"  {origin_label(zkey.origin):14s} extfvk={zkey.extfvk[:8].hex()}... "
                         f"spend={zkey.have_spending_key()}")

        lines.append("=== TRANSPARENT ===")
        lines.append(f"Transparent keys found: {len(self.tkeys)}")
        for tkey in self.tkeys:
            lines.append(f"  {origin_label(tkey.origin):14s} {tkey.address}")
        return lines
