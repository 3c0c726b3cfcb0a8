"""
Error types raised while decoding a ZecWallet Lite wallet file.

Every decoder raises one of these and never returns a partial result.
"""

from typing import Optional


class WalletError(Exception):
    """Base class for all wallet decoding failures"""


class WalletIOError(WalletError):
    """The underlying stream was truncated or could not be read"""


class InvalidFormat(WalletError, ValueError):
    """A structural violation in the wallet data"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason

    def __str__(self):
        return f"Invalid wallet format: {self.reason}"


class UnsupportedVersion(InvalidFormat):
    """A version tag above the highest version this reader understands"""

    def __init__(self, version: int, maximum: Optional[int] = None, section: str = "wallet"):
        self.version = version
        self.maximum = maximum
        self.section = section
        reason = f"{section} version {version}"
        if maximum is not None:
            reason += f" is newer than the supported maximum {maximum}"
        super().__init__(reason)

    def __str__(self):
        return f"Unsupported {self.reason}"


class LegacyVersionNotSupported(WalletError, NotImplementedError):
    """Wallet generations whose layout this reader does not parse"""

    def __init__(self, version: int):
        super().__init__(f"Wallets with version {version} are not supported yet")
        self.version = version
