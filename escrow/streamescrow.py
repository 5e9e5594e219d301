from typing import Any, Dict, List

from escrow.db import (
    allocate_stream_id,
    atomic,
    get_next_stream_id,
    get_stream_by_id,
    get_stream_events,
    get_streams_for_wallet,
    put_stream,
)
from escrow.errors import (
    ExceedsClaimable,
    InsufficientBalance,
    InvalidAmount,
    InvalidTimeRange,
    RecipientMismatch,
    SenderMismatch,
)
from escrow.stream import Stream
from escrow.util import (
    MAX_INT128,
    MAX_UINT64,
    address_or_raise,
    apply,
    logger,
    with_checksum_address,
)
from escrow.vesting import claimable_amount, vested_amount


@apply(with_checksum_address)
class StreamEscrow:
    """Linear vesting streams whose funds sit in a custody account.

    ``ledger`` moves and reports token balances, ``identity`` proves who the
    caller is and ``notifier`` receives created/claimed/canceled events.
    Every mutating call either completes or leaves store and ledger
    untouched.
    """

    def __init__(self, connection, ledger, identity, notifier, custody_address: str):
        self._connection = connection
        self._ledger = ledger
        self._identity = identity
        self._notifier = notifier
        self._custody_address = custody_address

    def get_custody_address(self) -> str:
        return self._custody_address

    # Reads

    def get(self, stream_id: int) -> Stream:
        return get_stream_by_id(self._connection, stream_id)

    def get_next_id(self) -> int:
        return get_next_stream_id(self._connection)

    def claimable(self, stream_id: int, at_timestamp: int) -> int:
        return claimable_amount(self.get(stream_id), at_timestamp)

    def get_streams(self, account_address: str) -> List[Stream]:
        return get_streams_for_wallet(self._connection, account_address)

    def get_history(self, stream_id: int) -> List[Dict[str, Any]]:
        self.get(stream_id)
        return get_stream_events(self._connection, stream_id)

    # Mutations

    def create(
        self,
        sender: str,
        recipient: str,
        token_address: str,
        total_amount: int,
        start_time: int,
        end_time: int,
        current_timestamp: int,
    ) -> int:
        if not isinstance(total_amount, int) or not 0 < total_amount <= MAX_INT128:
            raise InvalidAmount("Total amount must be positive.")
        if not 0 <= start_time < end_time <= MAX_UINT64:
            raise InvalidTimeRange("End time must be greater than start time.")
        address_or_raise(sender)
        address_or_raise(recipient)
        address_or_raise(token_address)

        self._identity.require_identity(sender)

        if self._ledger.balance_of(sender, token_address) < total_amount:
            raise InsufficientBalance("Insufficient sender balance.")

        with atomic(self._connection, "stream_create"):
            self._ledger.transfer(
                sender, self._custody_address, token_address, total_amount
            )

            stream_id = allocate_stream_id(self._connection)
            stream = Stream(
                stream_id=stream_id,
                sender=sender,
                recipient=recipient,
                token_address=token_address,
                total_amount=total_amount,
                claimed_amount=0,
                start_time=start_time,
                end_time=end_time,
                canceled=False,
            )
            put_stream(self._connection, stream)

            self._notifier.publish(
                "created",
                {
                    "stream_id": stream_id,
                    "timestamp": current_timestamp,
                    "actor": sender,
                    "amount": total_amount,
                    "metadata": {
                        "recipient": recipient,
                        "token": token_address,
                        "start_time": start_time,
                        "end_time": end_time,
                    },
                },
            )

        logger.info(
            f"Stream {stream_id} created: {total_amount} of {token_address} "
            f"from {sender} to {recipient} over [{start_time}, {end_time}]"
        )
        return stream_id

    def claim(
        self, stream_id: int, recipient: str, amount: int, current_timestamp: int
    ) -> int:
        if amount <= 0:
            raise InvalidAmount("Amount must be positive.")

        stream = self.get(stream_id)
        if stream.recipient != recipient:
            raise RecipientMismatch("Recipient mismatch.")
        # the mismatch is reported before the caller has proven anything
        self._identity.require_identity(stream.recipient)

        claimable_now = claimable_amount(stream, current_timestamp)
        if amount > claimable_now:
            raise ExceedsClaimable(
                f"Amount {amount} exceeds claimable {claimable_now}."
            )

        with atomic(self._connection, "stream_claim"):
            self._ledger.transfer(
                self._custody_address, stream.recipient, stream.token_address, amount
            )

            stream.claimed_amount += amount
            put_stream(self._connection, stream)

            self._notifier.publish(
                "claimed",
                {
                    "stream_id": stream_id,
                    "timestamp": current_timestamp,
                    "actor": stream.recipient,
                    "amount": amount,
                },
            )

        logger.info(f"Stream {stream_id}: {recipient} claimed {amount}")
        return amount

    def cancel(self, stream_id: int, sender: str, current_timestamp: int):
        stream = self.get(stream_id)
        if stream.sender != sender:
            raise SenderMismatch("Sender mismatch.")
        self._identity.require_identity(stream.sender)

        if stream.canceled:
            return

        vested = vested_amount(stream, current_timestamp)

        min_end = max(current_timestamp, stream.start_time + 1)
        if min_end < stream.end_time:
            stream.end_time = min_end
        stream.canceled = True

        # only the unvested part goes back, vested funds stay claimable
        refund = stream.total_amount - max(vested, stream.claimed_amount)

        with atomic(self._connection, "stream_cancel"):
            if refund > 0:
                self._ledger.transfer(
                    self._custody_address, stream.sender, stream.token_address, refund
                )
                stream.refunded_amount = refund

            put_stream(self._connection, stream)

            self._notifier.publish(
                "canceled",
                {
                    "stream_id": stream_id,
                    "timestamp": current_timestamp,
                    "actor": stream.sender,
                    "amount": refund,
                    "metadata": {"end_time": stream.end_time},
                },
            )

        logger.info(
            f"Stream {stream_id} canceled by {sender}, refunded {refund}, "
            f"end time {stream.end_time}"
        )
