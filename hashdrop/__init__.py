"""
Hashdrop - single-file transfer with end-to-end SHA-256 verification.
"""

__version__ = '0.1.0'
