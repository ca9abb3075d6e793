"""Minimal ABI encoding for the ChainSync and ERC-20 calls the adapter makes."""

from typing import List

from eth_utils import keccak

from ...services.address import is_valid_evm_address


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def _encode_uint(value: int) -> str:
    if value < 0 or value >= 2**256:
        raise ValueError("uint256 out of range")
    return format(value, "064x")


def _encode_address(address: str) -> str:
    if not is_valid_evm_address(address):
        raise ValueError(f"Invalid address for ABI encoding: {address!r}")
    return _strip_0x(address).lower().zfill(64)


def selector(signature: str) -> str:
    return f"0x{keccak(text=signature)[:4].hex()}"


ALLOWANCE = "allowance(address,address)"
APPROVE = "approve(address,uint256)"
BALANCE_OF = "balanceOf(address)"
TRANSFER_SAME_CHAIN = "transferSameChain(address,address,uint256)"
INITIATE_TRANSFER = "initiateTransfer(address,uint256,uint256,address)"
CALCULATE_FEE = "calculateFee(uint256)"


def _call(signature: str, words: List[str]) -> str:
    return selector(signature) + "".join(words)


def encode_allowance(owner: str, spender: str) -> str:
    return _call(ALLOWANCE, [_encode_address(owner), _encode_address(spender)])


def encode_approve(spender: str, amount: int) -> str:
    return _call(APPROVE, [_encode_address(spender), _encode_uint(amount)])


def encode_balance_of(owner: str) -> str:
    return _call(BALANCE_OF, [_encode_address(owner)])


def encode_transfer_same_chain(token: str, recipient: str, amount: int) -> str:
    return _call(
        TRANSFER_SAME_CHAIN,
        [_encode_address(token), _encode_address(recipient), _encode_uint(amount)],
    )


def encode_initiate_transfer(token: str, amount: int, destination_chain_id: int, recipient: str) -> str:
    return _call(
        INITIATE_TRANSFER,
        [
            _encode_address(token),
            _encode_uint(amount),
            _encode_uint(destination_chain_id),
            _encode_address(recipient),
        ],
    )


def encode_calculate_fee(amount: int) -> str:
    return _call(CALCULATE_FEE, [_encode_uint(amount)])


def decode_uint(result: str) -> int:
    """Decode the first 32-byte word of an ``eth_call`` result."""
    data = _strip_0x(result or "")
    if not data:
        return 0
    return int(data[:64], 16)


def hex_quantity(value: int) -> str:
    return hex(value)
