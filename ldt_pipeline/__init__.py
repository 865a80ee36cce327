"""
LDT ingestion pipeline.

Decodes LDT lab messages, resolves their BSNR/LANR identifiers to an
owner and stores them idempotently, quarantining what cannot be decoded.
"""

__version__ = "0.1.0"
