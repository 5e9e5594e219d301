import json
from unittest.mock import Mock

import requests
from eth_utils import to_checksum_address

from escrow.auth import CallerIdentity
from escrow.db import stream_from_row
from escrow.ledger import Ledger
from escrow.notifier import RollupNotifier
from escrow.streamescrow import StreamEscrow
from escrow.util import hex_to_str


def address(byte: int) -> str:
    return to_checksum_address("0x" + f"{byte:02x}" * 20)


def mock_requests_post():
    mock_post = Mock()
    mock_response = Mock()
    mock_response.status_code = 200
    mock_response.json.return_value = {"key": "value"}  # Mocked response
    mock_post.return_value = mock_response
    requests.post = mock_post
    return mock_post


def escrow_as(connection, caller, custody_address, ledger=None):
    return StreamEscrow(
        connection,
        ledger=ledger or Ledger(connection),
        identity=CallerIdentity(caller),
        notifier=RollupNotifier(connection),
        custody_address=custody_address,
    )


def get_all_streams(connection):
    cursor = connection.cursor()
    cursor.execute("SELECT * FROM stream ORDER BY id")
    return [stream_from_row(row) for row in cursor.fetchall()]


def calculate_escrowed_total(connection, token_address):
    return sum(
        stream.escrowed_amount()
        for stream in get_all_streams(connection)
        if stream.token_address == token_address
    )


def decode_post_payload(call):
    return json.loads(hex_to_str(call.kwargs["json"]["payload"]))


def posts_to(mock_post, endpoint):
    return [call for call in mock_post.call_args_list if call.args[0].endswith(endpoint)]
