"""rain-issuing wire models."""
from .base import RainModel
from .balance import Balance
from .card import (
    BillingAddress,
    Card,
    CardConfiguration,
    CardLimit,
    CardPin,
    CardSecrets,
    CardStatus,
    CardType,
    CreateCardRequest,
    EncryptedData,
    LimitFrequency,
    ListCardsParams,
    ProcessorDetails,
    ShippingAddress,
    ShippingMethod,
    UpdateCardPinRequest,
    UpdateCardRequest,
)
from .shipping_group import (
    Address,
    CreateShippingGroupRequest,
    ListShippingGroupsParams,
    ShippingGroup,
)
from .transaction import (
    ListTransactionsParams,
    SpendTransaction,
    SpendTransactionStatus,
    Transaction,
    TransactionType,
    UpdateTransactionRequest,
    parse_transaction,
)
from .webhook import ApplicationStatus, ComplianceWebhook, UserWebhookBody

__all__ = [
    "RainModel",
    "Balance",
    "BillingAddress",
    "Card",
    "CardConfiguration",
    "CardLimit",
    "CardPin",
    "CardSecrets",
    "CardStatus",
    "CardType",
    "CreateCardRequest",
    "EncryptedData",
    "LimitFrequency",
    "ListCardsParams",
    "ProcessorDetails",
    "ShippingAddress",
    "ShippingMethod",
    "UpdateCardPinRequest",
    "UpdateCardRequest",
    "Address",
    "CreateShippingGroupRequest",
    "ListShippingGroupsParams",
    "ShippingGroup",
    "ListTransactionsParams",
    "SpendTransaction",
    "SpendTransactionStatus",
    "Transaction",
    "TransactionType",
    "UpdateTransactionRequest",
    "parse_transaction",
    "ApplicationStatus",
    "ComplianceWebhook",
    "UserWebhookBody",
]
