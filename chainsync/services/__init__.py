"""Service layer helpers"""

from .address import is_valid_evm_address, normalize_address, same_address

__all__ = [
    "is_valid_evm_address",
    "normalize_address",
    "same_address",
]
