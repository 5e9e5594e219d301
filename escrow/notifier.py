import json

import requests

from escrow.db import add_stream_event
from escrow.util import logger, rollup_server, str_to_hex


class RollupNotifier:
    """Records stream events locally and emits them as rollup notices.

    Notices are best-effort: a failed POST is logged and otherwise ignored,
    the event row is still written with the rest of the operation.
    """

    def __init__(self, connection, server_url=None):
        self._connection = connection
        self._server_url = server_url or rollup_server

    def publish(self, topic: str, payload: dict):
        add_stream_event(
            self._connection,
            stream_id=payload["stream_id"],
            event_type=topic,
            timestamp=payload["timestamp"],
            actor=payload.get("actor"),
            amount=payload.get("amount"),
            metadata=payload.get("metadata"),
        )

        notice = {"event": topic, **payload}
        if "amount" in notice:
            notice["amount"] = str(notice["amount"])
        url = self._server_url + "/notice"
        try:
            response = requests.post(
                url, json={"payload": str_to_hex(json.dumps(notice))}
            )
        except requests.RequestException as e:
            logger.error(f"Failed to emit {topic} notice to {url}: {e}")
            return

        if response.status_code not in (200, 201, 202):
            logger.error(
                f"Failed POST request to {url}. Status: {response.status_code}. Response: {response.text}"
            )
        else:
            logger.info(f"Emitted {topic} notice for stream {payload['stream_id']}")
