from pinwallet.providers.custody import TokenBalance
from pinwallet.services import DEFAULT_BALANCE, find_usdc_balance, find_usdc_entry


def _balance(amount, symbol="", name=""):
    return TokenBalance(amount=amount, symbol=symbol, name=name)


def test_symbol_prefix_match():
    balances = [_balance("1", "ETH", "Ether"), _balance("25.5", "USDC.e", "Bridged")]

    assert find_usdc_balance(balances) == "25.5"


def test_name_match_when_symbol_differs():
    balances = [_balance("3", "ETH"), _balance("7", "xyz", "Circle USDC")]

    assert find_usdc_balance(balances) == "7"


def test_first_match_wins():
    balances = [_balance("1", "USDC"), _balance("2", "USDC")]

    assert find_usdc_entry(balances).amount == "1"


def test_match_is_case_sensitive():
    balances = [_balance("9", "usdc", "usd coin")]

    assert find_usdc_entry(balances) is None
    assert find_usdc_balance(balances) == DEFAULT_BALANCE


def test_empty_list_defaults_to_zero():
    assert find_usdc_balance([]) == "0"
