from eth_utils import is_same_address

from escrow.errors import Unauthorized


class CallerIdentity:
    """The rollup has already verified the signature of ``msg_sender``, so
    proving to be a principal reduces to being that address."""

    def __init__(self, caller: str):
        self.caller = caller

    def require_identity(self, principal: str):
        if not is_same_address(self.caller, principal):
            raise Unauthorized(f"Caller {self.caller} is not {principal}")


def only_admin(sender, admin_address):
    if not is_same_address(sender, admin_address):
        raise Unauthorized("Not from admin")
    return True
