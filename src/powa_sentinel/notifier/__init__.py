from powa_sentinel.notifier.base import Notifier
from powa_sentinel.notifier.console import ConsoleNotifier
from powa_sentinel.notifier.exceptions import NotifierError
from powa_sentinel.notifier.factory import build_notifier
from powa_sentinel.notifier.sqs import SqsNotifier
from powa_sentinel.notifier.wecom import WeComNotifier

__all__ = [
    "ConsoleNotifier",
    "Notifier",
    "NotifierError",
    "SqsNotifier",
    "WeComNotifier",
    "build_notifier",
]
