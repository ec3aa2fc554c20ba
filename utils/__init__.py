"""
Cryptographic primitives, pattern detection, errors and logging setup.
"""
