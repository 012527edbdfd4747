"""
AgriTrace — Mock Zero-Knowledge Proof Package.

Components:
    - hashing: SHA-256 primitives, Merkle roots, proof seals
    - prover: quality / economic / route claim builders
    - verifier: structural and public-input re-validation
    - validation: request-shape checks for incoming proof data

The scheme only simulates the shape of a ZKP system with plain hashing.
It gives secrecy by omission, not soundness.
"""
