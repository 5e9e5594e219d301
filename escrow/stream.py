from typing import Any, Dict


class Stream:
    def __init__(
        self,
        stream_id: int,
        sender: str,
        recipient: str,
        token_address: str,
        total_amount: int,
        claimed_amount: int,
        start_time: int,
        end_time: int,
        canceled: bool,
        refunded_amount: int = 0,
    ):
        self.id = stream_id
        self.sender = sender
        self.recipient = recipient
        self.token_address = token_address
        self.total_amount = total_amount
        self.claimed_amount = claimed_amount
        self.start_time = start_time
        self.end_time = end_time
        self.canceled = canceled
        self.refunded_amount = refunded_amount

    def has_started(self, current_timestamp: int) -> bool:
        return current_timestamp > self.start_time

    def has_ended(self, current_timestamp: int) -> bool:
        return current_timestamp >= self.end_time

    def duration(self) -> int:
        return self.end_time - self.start_time

    def unclaimed_amount(self) -> int:
        return self.total_amount - self.claimed_amount

    def entitled_amount(self) -> int:
        """Most the recipient can ever receive from this stream."""
        return self.total_amount - self.refunded_amount

    def escrowed_amount(self) -> int:
        """Balance the custody account holds on behalf of this stream."""
        return self.entitled_amount() - self.claimed_amount

    def to_dict(self) -> Dict[str, Any]:
        # amounts go out as strings, they do not fit in a JSON double
        return {
            "id": self.id,
            "sender": self.sender,
            "recipient": self.recipient,
            "token": self.token_address,
            "total_amount": str(self.total_amount),
            "claimed_amount": str(self.claimed_amount),
            "refunded_amount": str(self.refunded_amount),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "canceled": self.canceled,
        }

    def __eq__(self, other):
        if not isinstance(other, Stream):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"Stream({self.to_dict()})"
