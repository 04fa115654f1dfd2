"""
WalletLink — browser wallet vault recovery and on-chain ownership clustering.

Reads wallet-extension vaults from local browser profiles, decrypts them with
the owner's password, persists recovered credentials and addresses, then scans
transfer history to group addresses that are likely controlled by one owner.
"""

__version__ = "0.1.0"
