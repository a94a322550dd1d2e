from powa_sentinel.config import NotifierConfig
from powa_sentinel.notifier.base import Notifier
from powa_sentinel.notifier.console import ConsoleNotifier
from powa_sentinel.notifier.sqs import SqsNotifier
from powa_sentinel.notifier.wecom import WeComNotifier


def build_notifier(config: NotifierConfig) -> Notifier:
    """Create the channel named by ``config.type``.

    Raises:
        ValueError: If the type is unknown.
    """
    if config.type == "console":
        return ConsoleNotifier()
    if config.type == "wecom":
        return WeComNotifier(
            webhook_url=config.webhook_url,
            retries=config.retries,
            retry_delay=config.retry_delay_seconds,
        )
    if config.type == "sqs":
        return SqsNotifier(queue_url=config.queue_url, region=config.region)
    raise ValueError(f"unknown notifier type: {config.type}")
