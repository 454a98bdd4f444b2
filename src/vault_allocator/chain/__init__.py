"""Chain access: contract ABIs, call data and the state reader."""

from vault_allocator.chain.contracts import encode_vault_call
from vault_allocator.chain.reader import ChainReadError, ChainStateReader

__all__ = [
    "ChainReadError",
    "ChainStateReader",
    "encode_vault_call",
]
