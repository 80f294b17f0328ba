"""Client-side settlement engine for an equal-weighted basket index on Solana."""

__version__ = "0.3.0"
