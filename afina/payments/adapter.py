from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class Invoice:
    id: str
    url: str


class PaymentAdapter(ABC):
    @abstractmethod
    async def create_invoice(
        self, amount: Decimal, currency: str, order_id: str, description: str
    ) -> Invoice:
        raise NotImplementedError

    @abstractmethod
    async def get_payment_status(self, payment_id: str) -> dict:
        """
        Возвращает payload платежа в том же формате, что и IPN.
        """
        raise NotImplementedError
