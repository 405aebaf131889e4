"""
Key derivation, address and script utilities, and transaction signing.
"""
