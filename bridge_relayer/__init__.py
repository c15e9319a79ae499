"""Cross-chain relayer mirroring bridge and governance events between two chains."""

__version__ = "0.1.0"
