import os

from escrow.db import get_connection


def initialise_db():
    db_file_path = os.getenv("DB_FILE_PATH", "escrow.sqlite")
    for path in (db_file_path, db_file_path + "-wal", db_file_path + "-shm"):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    conn = get_connection()
    cursor = conn.cursor()

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS dapp_addresses (
            name TEXT PRIMARY KEY,
            address TEXT NOT NULL
        )
        """
    )

    # Initialize dapp_addresses with default values
    cursor.executemany(
        "INSERT OR REPLACE INTO dapp_addresses (name, address) VALUES (?, ?)",
        [
            ("admin", "0x0000000000000000000000000000000000000000"),
            ("erc20_portal", "0x0000000000000000000000000000000000000000"),
            ("dapp", "0x0000000000000000000000000000000000000000"),
        ],
    )

    # Counters are kept apart from the rows they number
    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS counter (
            name TEXT PRIMARY KEY,
            value INTEGER NOT NULL
        )
        """
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS balance (
            account_address TEXT NOT NULL,
            token_address TEXT NOT NULL,
            amount TEXT NOT NULL,
            PRIMARY KEY (account_address, token_address)
        )
        """
    )

    # Amounts and times are unbounded or u64 and go in as TEXT
    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS stream (
            id INTEGER PRIMARY KEY,
            sender TEXT NOT NULL,
            recipient TEXT NOT NULL,
            token_address TEXT NOT NULL,
            total_amount TEXT NOT NULL,
            claimed_amount TEXT NOT NULL,
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            canceled INTEGER NOT NULL,
            refunded_amount TEXT NOT NULL
        )
        """
    )

    cursor.execute("CREATE INDEX IF NOT EXISTS idx_stream_sender ON stream(sender)")
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_stream_recipient ON stream(recipient)"
    )

    cursor.execute(
        """
        CREATE TABLE IF NOT EXISTS stream_event (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            stream_id INTEGER NOT NULL,
            event_type TEXT NOT NULL,
            timestamp INTEGER NOT NULL,
            actor TEXT,
            amount TEXT,
            metadata TEXT,
            FOREIGN KEY (stream_id) REFERENCES stream(id)
        )
        """
    )

    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_stream_event_stream_id ON stream_event(stream_id)"
    )

    conn.commit()

    conn.close()


if __name__ == "__main__":
    initialise_db()
