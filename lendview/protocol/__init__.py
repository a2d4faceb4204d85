"""Lending-pool contract bindings: call encoding, reads and event decoding."""
