"""HederaIntel - market intelligence agent speaking the HCS-10 peer protocol."""

__version__ = "2.0.0"
