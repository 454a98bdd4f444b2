"""Contract ABIs and locally-built call data for the vault, adapter and Safe."""

from eth_abi import encode as abi_encode
from eth_utils import function_signature_to_4byte_selector

from vault_allocator.models import AllocationAction


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[str], mutability: str = "view") -> dict:
    return {
        "name": name,
        "type": "function",
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t} for t in outputs],
    }


VAULT_ABI = [
    _fn("totalAssets", [], ["uint256"]),
    _fn("isAllocator", [("account", "address")], ["bool"]),
    _fn(
        "allocate",
        [("adapter", "address"), ("data", "bytes"), ("assets", "uint256")],
        [],
        "nonpayable",
    ),
    _fn(
        "deallocate",
        [("adapter", "address"), ("data", "bytes"), ("assets", "uint256")],
        [],
        "nonpayable",
    ),
]

ADAPTER_ABI = [
    _fn("realAssets", [], ["uint256"]),
    _fn("expectedSupplyAssets", [("marketId", "bytes32")], ["uint256"]),
]

ERC20_ABI = [
    _fn("balanceOf", [("account", "address")], ["uint256"]),
]

# Safe execTransaction / getTransactionHash share the first nine parameters
_SAFE_TX_INPUTS = [
    ("to", "address"),
    ("value", "uint256"),
    ("data", "bytes"),
    ("operation", "uint8"),
    ("safeTxGas", "uint256"),
    ("baseGas", "uint256"),
    ("gasPrice", "uint256"),
    ("gasToken", "address"),
    ("refundReceiver", "address"),
]

SAFE_ABI = [
    _fn("nonce", [], ["uint256"]),
    _fn("getThreshold", [], ["uint256"]),
    _fn("isOwner", [("owner", "address")], ["bool"]),
    _fn("getTransactionHash", [*_SAFE_TX_INPUTS, ("_nonce", "uint256")], ["bytes32"]),
    _fn("execTransaction", [*_SAFE_TX_INPUTS, ("signatures", "bytes")], ["bool"], "payable"),
]

_VAULT_CALL_ARGS = ["address", "bytes", "uint256"]


def encode_vault_call(adapter: str, action: AllocationAction) -> bytes:
    """Build vault allocate/deallocate call data for one action."""
    name = action.direction.vault_function
    selector = function_signature_to_4byte_selector(f"{name}({','.join(_VAULT_CALL_ARGS)})")
    args = abi_encode(_VAULT_CALL_ARGS, [adapter, action.market.params.encode(), action.amount])
    return selector + args
