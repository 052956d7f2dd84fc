"""rain-issuing API resources."""
from .balances import AsyncBalancesResource
from .base import AsyncBaseResource
from .cards import AsyncCardsResource
from .shipping_groups import AsyncShippingGroupsResource
from .transactions import AsyncTransactionsResource

__all__ = [
    "AsyncBaseResource",
    "AsyncBalancesResource",
    "AsyncCardsResource",
    "AsyncShippingGroupsResource",
    "AsyncTransactionsResource",
]
