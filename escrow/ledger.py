from escrow.db import atomic, get_balance, set_balance
from escrow.errors import InvalidAmount, TransferFailed
from escrow.util import address_or_raise, apply, with_checksum_address


@apply(with_checksum_address)
class Ledger:
    """Token balances held by the dapp, one row per (account, token).

    Deposits arrive from the ERC-20 portal and withdrawals leave as vouchers;
    everything in between, including the escrow custody account, is a
    ``transfer`` between rows.
    """

    def __init__(self, connection):
        self._connection = connection

    def balance_of(self, account_address: str, token_address: str) -> int:
        return get_balance(self._connection, account_address, token_address)

    def deposit(self, account_address: str, token_address: str, amount: int):
        address_or_raise(account_address)
        address_or_raise(token_address)
        if amount <= 0:
            raise InvalidAmount("Deposit amount must be positive.")
        balance = self.balance_of(account_address, token_address)
        set_balance(self._connection, account_address, token_address, balance + amount)

    def withdraw(self, account_address: str, token_address: str, amount: int):
        if amount <= 0:
            raise TransferFailed("Withdraw amount must be positive.")
        balance = self.balance_of(account_address, token_address)
        if balance < amount:
            raise TransferFailed(
                f"Insufficient balance to withdraw {amount} of {token_address}."
            )
        set_balance(self._connection, account_address, token_address, balance - amount)

    def transfer(
        self, from_address: str, to_address: str, token_address: str, amount: int
    ):
        if amount <= 0:
            raise TransferFailed("Transfer amount must be positive.")
        with atomic(self._connection, "ledger_transfer"):
            from_balance = self.balance_of(from_address, token_address)
            if from_balance < amount:
                raise TransferFailed(
                    f"Insufficient balance to transfer {amount} of {token_address}."
                )
            set_balance(
                self._connection, from_address, token_address, from_balance - amount
            )
            to_balance = self.balance_of(to_address, token_address)
            set_balance(
                self._connection, to_address, token_address, to_balance + amount
            )
