import json
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from escrow.errors import NotFound
from escrow.stream import Stream
from escrow.util import MAX_INT64, int_to_str, str_to_int

NEXT_STREAM_ID_KEY = "next_stream_id"


def get_connection():
    db_file_path = os.getenv("DB_FILE_PATH", "escrow.sqlite")
    conn = sqlite3.connect(db_file_path)
    cursor = conn.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    cursor.execute("PRAGMA journal_mode = WAL")
    return conn


@contextmanager
def atomic(connection, name: str):
    """Run a block inside a savepoint, undoing all of its writes on error."""
    connection.execute(f"SAVEPOINT {name}")
    try:
        yield connection
    except Exception:
        connection.execute(f"ROLLBACK TO SAVEPOINT {name}")
        connection.execute(f"RELEASE SAVEPOINT {name}")
        raise
    else:
        connection.execute(f"RELEASE SAVEPOINT {name}")


# Stream ids


def get_next_stream_id(connection) -> int:
    cursor = connection.cursor()
    cursor.execute(
        """
        SELECT value FROM counter
        WHERE name = ?
        """,
        (NEXT_STREAM_ID_KEY,),
    )
    row = cursor.fetchone()
    return row[0] if row else 0


def allocate_stream_id(connection) -> int:
    next_id = get_next_stream_id(connection) + 1
    cursor = connection.cursor()
    cursor.execute(
        """
        INSERT INTO counter (name, value)
        VALUES (?, ?)
        ON CONFLICT(name)
        DO UPDATE SET value = EXCLUDED.value
        """,
        (NEXT_STREAM_ID_KEY, next_id),
    )
    return next_id


# Streams


def stream_from_row(row) -> Stream:
    return Stream(
        stream_id=row[0],
        sender=row[1],
        recipient=row[2],
        token_address=row[3],
        total_amount=str_to_int(row[4]),
        claimed_amount=str_to_int(row[5]),
        start_time=str_to_int(row[6]),
        end_time=str_to_int(row[7]),
        canceled=True if row[8] == 1 else False,
        refunded_amount=str_to_int(row[9]),
    )


def put_stream(connection, stream: Stream) -> None:
    cursor = connection.cursor()
    cursor.execute(
        """
        INSERT INTO stream (id, sender, recipient, token_address, total_amount, claimed_amount, start_time, end_time, canceled, refunded_amount)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id)
        DO UPDATE SET
            claimed_amount = EXCLUDED.claimed_amount,
            end_time = EXCLUDED.end_time,
            canceled = EXCLUDED.canceled,
            refunded_amount = EXCLUDED.refunded_amount
        """,
        (
            stream.id,
            stream.sender,
            stream.recipient,
            stream.token_address,
            int_to_str(stream.total_amount),
            int_to_str(stream.claimed_amount),
            int_to_str(stream.start_time),
            int_to_str(stream.end_time),
            1 if stream.canceled else 0,
            int_to_str(stream.refunded_amount),
        ),
    )


def get_stream_by_id(connection, stream_id) -> Stream:
    # ids are allocated from 1 and stay within SQLite's INTEGER range
    if not 0 <= stream_id <= MAX_INT64:
        raise NotFound(f"Stream {stream_id} not found.")
    cursor = connection.cursor()
    cursor.execute(
        """
        SELECT * FROM stream
        WHERE id = ?
        """,
        (stream_id,),
    )
    row = cursor.fetchone()

    if row is None:
        raise NotFound(f"Stream {stream_id} not found.")
    return stream_from_row(row)


def get_streams_for_wallet(connection, account_address) -> List[Stream]:
    cursor = connection.cursor()
    cursor.execute(
        """
        SELECT * FROM stream
        WHERE sender = ? OR recipient = ?
        ORDER BY id
        """,
        (account_address, account_address),
    )
    return [stream_from_row(row) for row in cursor.fetchall()]


# Stream events


def add_stream_event(
    connection,
    stream_id: int,
    event_type: str,
    timestamp: int,
    actor: Optional[str] = None,
    amount: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> int:
    cursor = connection.cursor()
    cursor.execute(
        """
        INSERT INTO stream_event (stream_id, event_type, timestamp, actor, amount, metadata)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            stream_id,
            event_type,
            timestamp,
            actor,
            int_to_str(amount) if amount is not None else None,
            json.dumps(metadata) if metadata else None,
        ),
    )
    return cursor.lastrowid


def get_stream_events(connection, stream_id) -> List[Dict[str, Any]]:
    cursor = connection.cursor()
    cursor.execute(
        """
        SELECT id, stream_id, event_type, timestamp, actor, amount, metadata
        FROM stream_event
        WHERE stream_id = ?
        ORDER BY timestamp ASC, id ASC
        """,
        (stream_id,),
    )
    events = []
    for row in cursor.fetchall():
        events.append(
            {
                "id": row[0],
                "stream_id": row[1],
                "event_type": row[2],
                "timestamp": row[3],
                "actor": row[4],
                "amount": row[5],
                "metadata": json.loads(row[6]) if row[6] else None,
            }
        )
    return events


# Balances


def get_balance(connection, account_address, token_address) -> int:
    cursor = connection.cursor()
    cursor.execute(
        """
        SELECT amount FROM balance
        WHERE account_address = ? AND token_address = ?
        """,
        (account_address, token_address),
    )
    row = cursor.fetchone()

    return str_to_int(row[0]) if row else 0


def set_balance(connection, account_address, token_address, amount) -> None:
    cursor = connection.cursor()
    cursor.execute(
        """
        INSERT INTO balance (account_address, token_address, amount)
        VALUES (?, ?, ?)
        ON CONFLICT(account_address, token_address)
        DO UPDATE SET amount = EXCLUDED.amount
        """,
        (account_address, token_address, int_to_str(amount)),
    )


# Dapp addresses


def _set_dapp_address(connection, name, address):
    cursor = connection.cursor()
    cursor.execute(
        """
        UPDATE dapp_addresses
        SET address = ?
        WHERE name = ?
        """,
        (address, name),
    )


def _get_dapp_address(connection, name):
    cursor = connection.cursor()
    cursor.execute(
        """
        SELECT address FROM dapp_addresses
        WHERE name = ?
        """,
        (name,),
    )
    row = cursor.fetchone()
    return row[0] if row else None


def set_admin(connection, admin_address):
    _set_dapp_address(connection, "admin", admin_address)


def get_admin(connection):
    return _get_dapp_address(connection, "admin")


def set_erc20_portal(connection, portal_address):
    _set_dapp_address(connection, "erc20_portal", portal_address)


def get_erc20_portal(connection):
    return _get_dapp_address(connection, "erc20_portal")


def set_dapp_address(connection, dapp_address):
    _set_dapp_address(connection, "dapp", dapp_address)


def get_dapp_address(connection):
    return _get_dapp_address(connection, "dapp")
