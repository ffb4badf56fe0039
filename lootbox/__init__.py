"""Client tooling for the lootbox ticket and reward program on Solana."""

__version__ = "0.4.0"
