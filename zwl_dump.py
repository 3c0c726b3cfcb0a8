#!/usr/bin/env python3
"""
ZecWallet Lite Wallet Dump
==========================

Prints a summary of a zecwallet-light-wallet.dat file.

Usage:
    python zwl_dump.py zecwallet-light-wallet.dat
    python zwl_dump.py zecwallet-light-wallet.dat summarize -v
    python zwl_dump.py zecwallet-light-wallet.dat -dd
"""

import argparse
import logging
import sys
from dataclasses import dataclass
from enum import Enum

from zwl_errors import WalletError
from zwl_reader import WalletReader, WalletSnapshot


class Verbosity(Enum):
    BASIC = 0
    VERBOSE = 1
    DEBUG = 2


@dataclass
class OutputOptions:
    verbosity: Verbosity = Verbosity.BASIC
    show_secrets: bool = False


def init_logging(debug: int):
    """Configure logging for -d (info) or -dd (debug); silent otherwise."""
    if debug <= 0:
        return
    level = logging.INFO if debug == 1 else logging.DEBUG
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s')


def print_summary(wallet: WalletSnapshot, options: OutputOptions):
    print("=" * 70)
    print(f"Wallet was created for [ {wallet.chain_name} ]")
    print("=" * 70)

    counts = wallet.keys.pool_counts()
    if not any(counts.values()):
        print("No keys found in wallet.")
    else:
        for pool, count in counts.items():
            print(f"{pool.capitalize():12s} keys: {count}")

    if options.verbosity is Verbosity.BASIC:
        return

    print("-" * 70)
    print(f"Wallet version:     {wallet.version}")
    print(f"Birthday:           {wallet.birthday}")
    print(f"Latest sync height: {wallet.latest_sync_height()}")
    print(f"Transactions:       {len(wallet.txns)}")
    height_range = wallet.block_height_range()
    if height_range:
        print(f"Height range:       {height_range[0]} - {height_range[1]}")
    print(f"Estimated balance:  {wallet.estimated_balance() / 1e8:.8f} ZEC")

    if options.verbosity is Verbosity.DEBUG or options.show_secrets:
        print("-" * 70)
        for line in wallet.describe(show_secrets=options.show_secrets):
            print(line)


def main(argv=None):
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description='ZecWallet Lite wallet file dumper',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python zwl_dump.py zecwallet-light-wallet.dat
  python zwl_dump.py zecwallet-light-wallet.dat summarize --verbose
  python zwl_dump.py zecwallet-light-wallet.dat -v --show-secrets
"""
    )

    parser.add_argument('wallet_file', help='Path to the wallet file')
    parser.add_argument('command', nargs='?', default='summarize', choices=['summarize'],
                        help='What to do with the wallet (default: summarize)')
    parser.add_argument('--debug', '-d', action='count', default=0,
                        help='Log decoding progress (-dd for more detail)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Print versions, heights, transactions and balance')
    parser.add_argument('--show-secrets', action='store_true',
                        help='Include the clear seed of unlocked wallets')

    args = parser.parse_args(argv)
    init_logging(args.debug)

    if args.debug >= 2:
        verbosity = Verbosity.DEBUG
    elif args.verbose:
        verbosity = Verbosity.VERBOSE
    else:
        verbosity = Verbosity.BASIC
    options = OutputOptions(verbosity=verbosity, show_secrets=args.show_secrets)

    try:
        wallet = WalletReader.read(args.wallet_file)
    except WalletError as e:
        print(f"Error reading wallet: {e}", file=sys.stderr)
        return 1

    print_summary(wallet, options)
    return 0


if __name__ == "__main__":
    sys.exit(main())
