"""Safe multisig signing and execution."""

from vault_allocator.safe.client import SafeClient
from vault_allocator.safe.executor import SafeExecutor, SubmissionError
from vault_allocator.safe.signer import SafeTransactionSigner, SigningError

__all__ = [
    "SafeClient",
    "SafeExecutor",
    "SafeTransactionSigner",
    "SigningError",
    "SubmissionError",
]
