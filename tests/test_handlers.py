import json
from typing import Any, Dict
import os

os.environ["ROLLUP_HTTP_SERVER_URL"] = "http://127.0.0.1:8080/host-runner"
import unittest
from unittest.mock import DEFAULT
import sys
from eth_abi import decode
from eth_abi.packed import encode_packed
import requests

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from escrow.db import get_admin, get_connection, get_dapp_address, get_erc20_portal
from escrow.handlers import handle, handle_advance, handle_inspect
from escrow.ledger import Ledger
from escrow.util import str_to_hex
from sqlite import initialise_db
from tests.utils import (
    address,
    calculate_escrowed_total,
    decode_post_payload,
    mock_requests_post,
    posts_to,
)


def format_json_data(method: str, args: Dict[str, Any]) -> str:
    data = {
        "method": method,
        "args": {
            key: str(value) if isinstance(value, (int, float)) else value
            for key, value in args.items()
        },
    }
    return str_to_hex(json.dumps(data))


def format_erc20_deposit(token_address: str, depositor: str, amount: int, data="0x"):
    encoded = encode_packed(
        ["bool", "address", "address", "uint256"],
        [True, token_address, depositor, amount],
    )
    return "0x" + encoded.hex() + data[2:]


def advance_input(msg_sender: str, payload: str, timestamp: int = 0):
    return {
        "metadata": {
            "msg_sender": msg_sender.lower(),
            "epoch_index": 0,
            "input_index": 1,
            "block_number": 30334,
            "timestamp": timestamp,
        },
        "payload": payload,
    }


class TestHandlers(unittest.TestCase):
    def setUp(self):
        os.environ["DB_FILE_PATH"] = "test-escrow-handlers.sqlite"
        initialise_db()
        self.mock_post = mock_requests_post()

        self.admin_address = address(0x01)
        self.portal_address = address(0x02)
        self.dapp_address = address(0x03)
        self.token_address = address(0xAA)
        self.sender_address = address(0x11)
        self.recipient_address = address(0x22)
        self.random_address = address(0x33)

        self.assert_accepted(
            self.admin_address, "claim_admin", {"admin": self.admin_address}
        )
        self.assert_accepted(
            self.admin_address,
            "set_erc20_portal",
            {"erc20_portal": self.portal_address},
        )
        self.assert_accepted(
            self.admin_address, "set_dapp_address", {"dapp_address": self.dapp_address}
        )

    def tearDown(self):
        connection = get_connection()
        escrowed = calculate_escrowed_total(connection, self.token_address)
        custody_balance = Ledger(connection).balance_of(
            self.dapp_address, self.token_address
        )
        connection.close()
        self.assertEqual(custody_balance, escrowed)

    def send(self, msg_sender, method, args, timestamp=0):
        return handle_advance(
            advance_input(msg_sender, format_json_data(method, args), timestamp)
        )

    def assert_accepted(self, msg_sender, method, args, timestamp=0):
        self.assertEqual(self.send(msg_sender, method, args, timestamp), "accept")

    def assert_rejected(self, msg_sender, method, args, timestamp=0):
        self.assertEqual(self.send(msg_sender, method, args, timestamp), "reject")
        return decode_post_payload(self.mock_post.call_args)["message"]

    def deposit(self, depositor, amount, data="0x"):
        return handle_advance(
            advance_input(
                self.portal_address,
                format_erc20_deposit(self.token_address, depositor, amount, data),
            )
        )

    def inspect(self, query: Dict[str, Any]):
        status = handle_inspect({"payload": str_to_hex(json.dumps(query))})
        message = decode_post_payload(self.mock_post.call_args)["message"]
        return status, message

    def balance(self, wallet):
        status, message = self.inspect(
            {
                "data": "balance",
                "wallet_address": wallet,
                "token_address": self.token_address,
            }
        )
        self.assertEqual(status, "accept")
        return int(json.loads(message))

    def create_stream(self, total_amount=1000, start_time=0, end_time=1000):
        self.assert_accepted(
            self.sender_address,
            "create_stream",
            {
                "sender": self.sender_address,
                "recipient": self.recipient_address,
                "token": self.token_address,
                "total_amount": total_amount,
                "start_time": start_time,
                "end_time": end_time,
            },
        )
        status, message = self.inspect({"data": "next_stream_id"})
        return json.loads(message)

    def test_dapp_addresses(self):
        connection = get_connection()
        self.assertEqual(get_admin(connection), self.admin_address)
        self.assertEqual(get_erc20_portal(connection), self.portal_address)
        self.assertEqual(get_dapp_address(connection), self.dapp_address)
        connection.close()

    def test_admin_can_only_be_claimed_once(self):
        self.send(self.random_address, "claim_admin", {"admin": self.random_address})
        connection = get_connection()
        self.assertEqual(get_admin(connection), self.admin_address)
        connection.close()

    def test_only_admin_can_set_addresses(self):
        message = self.assert_rejected(
            self.random_address, "set_dapp_address", {"dapp_address": self.random_address}
        )
        self.assertEqual(message, "Not from admin")

    def test_deposit(self):
        self.assertEqual(self.deposit(self.sender_address, 5000), "accept")
        self.assertEqual(self.balance(self.sender_address), 5000)

    def test_failed_success_report_rolls_back_input(self):
        failed_reports = []

        def post(url, json=None):
            if url.endswith("/report") and not failed_reports:
                failed_reports.append(url)
                raise requests.ConnectionError()
            return DEFAULT

        self.mock_post.side_effect = post
        self.assertEqual(self.deposit(self.sender_address, 5000), "reject")
        self.assertEqual(len(failed_reports), 1)

        self.mock_post.side_effect = None
        self.assertEqual(self.balance(self.sender_address), 0)

    def test_deposit_and_create_in_one_input(self):
        action = format_json_data(
            "create_stream",
            {
                "sender": self.sender_address,
                "recipient": self.recipient_address,
                "token": self.token_address,
                "total_amount": 1000,
                "start_time": 0,
                "end_time": 1000,
            },
        )
        self.assertEqual(self.deposit(self.sender_address, 1000, action), "accept")
        self.assertEqual(self.balance(self.sender_address), 0)
        self.assertEqual(self.balance(self.dapp_address), 1000)

    def test_stream_lifecycle(self):
        self.deposit(self.sender_address, 5000)
        stream_id = self.create_stream()
        self.assertEqual(stream_id, 1)

        status, message = self.inspect(
            {"data": "claimable", "stream_id": stream_id, "timestamp": 500}
        )
        self.assertEqual(json.loads(message), "500")

        self.assert_accepted(
            self.recipient_address,
            "claim",
            {"stream_id": stream_id, "recipient": self.recipient_address, "amount": 300},
            timestamp=500,
        )
        self.assertEqual(self.balance(self.recipient_address), 300)

        self.assert_accepted(
            self.sender_address,
            "cancel_stream",
            {"stream_id": stream_id, "sender": self.sender_address},
            timestamp=600,
        )
        self.assertEqual(self.balance(self.sender_address), 4400)

        status, message = self.inspect(
            {"data": "stream", "stream_id": stream_id, "timestamp": 900}
        )
        stream = json.loads(message)
        self.assertEqual(stream["status"], "canceled")
        self.assertEqual(stream["end_time"], 600)
        self.assertEqual(stream["claimed_amount"], "300")
        self.assertEqual(stream["claimable_amount"], "300")

        status, message = self.inspect({"data": "history", "stream_id": stream_id})
        self.assertEqual(
            [event["event_type"] for event in json.loads(message)],
            ["created", "claimed", "canceled"],
        )

        status, message = self.inspect(
            {"data": "streams", "wallet_address": self.recipient_address}
        )
        self.assertEqual([s["id"] for s in json.loads(message)], [stream_id])

    def test_rejected_claim_rolls_back(self):
        self.deposit(self.sender_address, 1000)
        stream_id = self.create_stream()

        message = self.assert_rejected(
            self.recipient_address,
            "claim",
            {"stream_id": stream_id, "recipient": self.recipient_address, "amount": 600},
            timestamp=500,
        )
        self.assertIn("exceeds claimable", message)
        self.assertEqual(self.balance(self.recipient_address), 0)
        self.assertEqual(self.balance(self.dapp_address), 1000)

    def test_claim_by_other_caller_is_rejected(self):
        self.deposit(self.sender_address, 1000)
        stream_id = self.create_stream()

        message = self.assert_rejected(
            self.random_address,
            "claim",
            {"stream_id": stream_id, "recipient": self.recipient_address, "amount": 100},
            timestamp=500,
        )
        self.assertIn("is not", message)

    def test_create_without_funds_is_rejected(self):
        message = self.assert_rejected(
            self.sender_address,
            "create_stream",
            {
                "sender": self.sender_address,
                "recipient": self.recipient_address,
                "token": self.token_address,
                "total_amount": 1000,
                "start_time": 0,
                "end_time": 1000,
            },
        )
        self.assertEqual(message, "Insufficient sender balance.")
        status, message = self.inspect({"data": "next_stream_id"})
        self.assertEqual(json.loads(message), 0)

    def test_withdraw_issues_voucher(self):
        self.deposit(self.recipient_address, 700)
        self.assert_accepted(
            self.recipient_address,
            "withdraw",
            {"token": self.token_address, "amount": 200},
        )
        self.assertEqual(self.balance(self.recipient_address), 500)

        vouchers = posts_to(self.mock_post, "/voucher")
        self.assertEqual(len(vouchers), 1)
        voucher = vouchers[0].kwargs["json"]
        self.assertEqual(voucher["destination"], self.token_address)
        payload = bytes.fromhex(voucher["payload"][2:])
        self.assertEqual(payload[:4], bytes.fromhex("a9059cbb"))
        recipient, amount = decode(["address", "uint256"], payload[4:])
        self.assertEqual(recipient.lower(), self.recipient_address.lower())
        self.assertEqual(amount, 200)

    def test_withdraw_more_than_balance_is_rejected(self):
        self.deposit(self.recipient_address, 100)
        self.assert_rejected(
            self.recipient_address,
            "withdraw",
            {"token": self.token_address, "amount": 200},
        )
        self.assertEqual(self.balance(self.recipient_address), 100)
        self.assertEqual(posts_to(self.mock_post, "/voucher"), [])

    def test_unknown_method_is_rejected(self):
        message = self.assert_rejected(self.random_address, "mint", {})
        self.assertEqual(message, "Unknown method mint")

    def test_inspect_unknown_stream(self):
        status, message = self.inspect({"data": "stream", "stream_id": 7})
        self.assertEqual(status, "reject")
        self.assertEqual(message, "Stream 7 not found.")

    def test_handle_dispatches_by_request_type(self):
        status = handle(
            {
                "request_type": "inspect_state",
                "data": {"payload": str_to_hex(json.dumps({"data": "next_stream_id"}))},
            }
        )
        self.assertEqual(status, "accept")


if __name__ == "__main__":
    unittest.main()
