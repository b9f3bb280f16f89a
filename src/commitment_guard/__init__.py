"""
Commitment Execution Guard.

Automates a single price-triggered swap on behalf of an on-chain commitment
(a Safe governed by an Optimistic Governor module) and guarantees the swap is
proposed at most once per commitment episode, even though confirmation arrives
asynchronously from the chain.
"""

__version__ = "0.1.0"
