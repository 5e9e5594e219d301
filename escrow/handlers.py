from escrow.auth import CallerIdentity, only_admin
from escrow.db import (
    get_admin,
    get_connection,
    get_dapp_address,
    get_erc20_portal,
    set_admin,
    set_dapp_address,
    set_erc20_portal,
)
from escrow.ledger import Ledger
from escrow.notifier import RollupNotifier
from escrow.streamescrow import StreamEscrow
from escrow.util import (
    ERC20_DEPOSIT_HEADER_SIZE,
    ERC20_TRANSFER_SELECTOR,
    ZERO_ADDRESS,
    decode_packed,
    hex_to_str,
    logger,
    rollup_server,
    str_to_hex,
)
from escrow.vesting import claimable_amount, stream_status, vested_amount

from eth_abi import encode
from eth_utils import is_same_address, to_checksum_address
import json
import requests


def send_post_request(endpoint, payload):
    url = rollup_server + endpoint
    json_payload = {"payload": str_to_hex(json.dumps(payload))}

    response = requests.post(url, json=json_payload)

    if response.status_code not in (200, 202):
        logger.error(
            f"Failed POST request to {url}. Status: {response.status_code}. Response: {response.text}"
        )
    else:
        logger.info(
            f"Successful POST request to {url}. Status: {response.status_code}. Response: {response.text}"
        )

    return response


def report_error(msg, payload):
    error_log = {
        "error": True,
        "message": msg,
        "payload": payload,
    }
    logger.error(error_log)
    send_post_request("/report", error_log)
    return "reject"


def report_success(msg, payload):
    """Function to report successful operations."""
    success_log = {
        "error": False,
        "message": msg,
        "payload": payload,
    }
    logger.info(f"Reporting success {success_log}")
    send_post_request("/report", success_log)
    return "accept"


def is_erc20_portal(sender, connection):
    portal_address = get_erc20_portal(connection)
    return is_same_address(sender, portal_address)


def get_escrow(connection, caller):
    return StreamEscrow(
        connection,
        ledger=Ledger(connection),
        identity=CallerIdentity(caller),
        notifier=RollupNotifier(connection),
        custody_address=get_dapp_address(connection),
    )


def issue_erc20_voucher(token_address, recipient, amount):
    transfer_payload = ERC20_TRANSFER_SELECTOR + encode(
        ["address", "uint256"], [recipient, amount]
    )
    voucher = {
        "destination": token_address,
        "payload": "0x" + transfer_payload.hex(),
    }
    logger.info(f"Issuing voucher {voucher}")
    response = requests.post(rollup_server + "/voucher", json=voucher)
    logger.info(
        f"Received voucher status {response.status_code} body {response.content}"
    )
    return response


def handle_action(data, connection):
    binary = bytes.fromhex(data["payload"][2:])
    msg_sender = data["metadata"]["msg_sender"]
    timestamp = data["metadata"]["timestamp"]

    sender = msg_sender
    encoded_action = binary

    if is_erc20_portal(msg_sender, connection):
        success, token_address, depositor, amount = decode_packed(
            ["bool", "address", "address", "uint256"],
            binary[:ERC20_DEPOSIT_HEADER_SIZE],
        )
        if not success:
            raise Exception("ERC-20 deposit was not successful")
        logger.info(f"Received deposit of {amount} {token_address} from {depositor}")
        Ledger(connection).deposit(depositor, token_address, amount)
        sender = depositor
        encoded_action = binary[ERC20_DEPOSIT_HEADER_SIZE:]

    if not encoded_action:
        return "accept"

    payload = json.loads(encoded_action)
    method = payload["method"]
    args = payload.get("args", {})
    admin_address = get_admin(connection)

    if method == "claim_admin" and is_same_address(admin_address, ZERO_ADDRESS):
        set_admin(connection, to_checksum_address(args["admin"]))
        return "accept"

    if method == "set_admin" and only_admin(sender, admin_address):
        set_admin(connection, to_checksum_address(args["admin"]))
    elif method == "set_erc20_portal" and only_admin(sender, admin_address):
        set_erc20_portal(connection, to_checksum_address(args["erc20_portal"]))
    elif method == "set_dapp_address" and only_admin(sender, admin_address):
        set_dapp_address(connection, to_checksum_address(args["dapp_address"]))
    elif method == "create_stream":
        get_escrow(connection, sender).create(
            sender=args["sender"],
            recipient=args["recipient"],
            token_address=args["token"],
            total_amount=int(args["total_amount"]),
            start_time=int(args["start_time"]),
            end_time=int(args["end_time"]),
            current_timestamp=timestamp,
        )
    elif method == "claim":
        get_escrow(connection, sender).claim(
            stream_id=int(args["stream_id"]),
            recipient=args["recipient"],
            amount=int(args["amount"]),
            current_timestamp=timestamp,
        )
    elif method == "cancel_stream":
        get_escrow(connection, sender).cancel(
            stream_id=int(args["stream_id"]),
            sender=args["sender"],
            current_timestamp=timestamp,
        )
    elif method == "withdraw":
        token_address = to_checksum_address(args["token"])
        amount = int(args["amount"])
        Ledger(connection).withdraw(sender, token_address, amount)
        issue_erc20_voucher(token_address, sender, amount)
    else:
        raise Exception(f"Unknown method {method}")

    return "accept"


def handle_advance(data):
    logger.info(f"Received advance request data {data}")
    connection = get_connection()
    connection.execute("BEGIN")
    try:
        status = handle_action(data, connection)
        report_success("Success", str_to_hex(json.dumps(data)))
        connection.commit()
    except Exception as e:
        connection.rollback()
        status = "reject"
        report_error(str(e), data["payload"])
    finally:
        connection.close()

    return status


def inspect_stream(escrow, json_payload):
    stream = escrow.get(int(json_payload["stream_id"]))
    result = stream.to_dict()
    if "timestamp" in json_payload:
        at_timestamp = int(json_payload["timestamp"])
        result["status"] = stream_status(stream, at_timestamp)
        result["vested_amount"] = str(vested_amount(stream, at_timestamp))
        result["claimable_amount"] = str(claimable_amount(stream, at_timestamp))
    return result


def handle_inspect(data):
    logger.info(f"Received inspect request data {data}")

    connection = get_connection()
    try:
        payload = hex_to_str(data["payload"])
        json_payload = json.loads(payload)
        escrow = get_escrow(connection, ZERO_ADDRESS)
        query = json_payload["data"]

        if query == "stream":
            result = inspect_stream(escrow, json_payload)
        elif query == "claimable":
            result = str(
                escrow.claimable(
                    int(json_payload["stream_id"]), int(json_payload["timestamp"])
                )
            )
        elif query == "next_stream_id":
            result = escrow.get_next_id()
        elif query == "streams":
            result = [
                stream.to_dict()
                for stream in escrow.get_streams(json_payload["wallet_address"])
            ]
        elif query == "history":
            result = escrow.get_history(int(json_payload["stream_id"]))
        elif query == "balance":
            result = str(
                Ledger(connection).balance_of(
                    json_payload["wallet_address"], json_payload["token_address"]
                )
            )
        else:
            return report_success("ok", data["payload"])

        return report_success(json.dumps(result), data["payload"])
    except Exception as e:
        return report_error(str(e), data["payload"])
    finally:
        connection.close()


def handle(rollup_request):
    handlers = {
        "advance_state": handle_advance,
        "inspect_state": handle_inspect,
    }
    handler = handlers[rollup_request["request_type"]]
    return handler(rollup_request["data"])
