from typing import Protocol, runtime_checkable

from powa_sentinel.domain import AlertContext


@runtime_checkable
class Notifier(Protocol):
    """Protocol for alert delivery channels."""

    @property
    def name(self) -> str:
        ...

    async def send(self, alert: AlertContext) -> None:
        ...
