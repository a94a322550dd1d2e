import json
from dataclasses import asdict
from datetime import datetime
from typing import Any

from aiobotocore.session import get_session
from botocore.exceptions import BotoCoreError, ClientError

from powa_sentinel.domain import AlertContext
from powa_sentinel.notifier.exceptions import NotifierError


class SqsNotifier:
    """Publishes each alert as one JSON message.

    Severities are encoded as their integer level and health statuses as
    their lowercase name.
    """

    def __init__(self, queue_url: str, region: str = "us-east-1") -> None:
        self._queue_url = queue_url
        self._region = region
        self._session = get_session()

    @property
    def name(self) -> str:
        return "sqs"

    async def send(self, alert: AlertContext) -> None:
        try:
            async with self._session.create_client("sqs", region_name=self._region) as client:
                await client.send_message(
                    QueueUrl=self._queue_url,
                    MessageBody=self.serialize(alert),
                    MessageAttributes={
                        "health_status": {
                            "DataType": "String",
                            "StringValue": str(alert.summary.health_status),
                        },
                    },
                )
        except (BotoCoreError, ClientError) as exc:
            raise NotifierError(f"sending alert {alert.req_id} to SQS: {exc}") from exc

    def serialize(self, alert: AlertContext) -> str:
        return json.dumps(asdict(alert), default=self._json_default)

    @staticmethod
    def _json_default(obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
