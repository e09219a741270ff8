"""Service layer helpers"""

from .balance import DEFAULT_BALANCE, find_usdc_balance, find_usdc_entry
from .user_address import UserAddressQuery, UserAddressView

__all__ = [
    "DEFAULT_BALANCE",
    "find_usdc_balance",
    "find_usdc_entry",
    "UserAddressQuery",
    "UserAddressView",
]
