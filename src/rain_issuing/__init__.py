"""
rain-issuing: client-side card lifecycle, rolling spend limits, bulk shipment
batching and secure card secret retrieval for the Rain issuing API.

Example:
    ```python
    from rain_issuing import CardService, CardType, load_settings

    async with CardService.from_settings(load_settings()) as service:
        card = await service.issue_card("user-id", CardType.VIRTUAL, limit=10_000,
                                        full_name="Ada Lovelace")
        await service.authorize_charge(card.card_id, 2_500)
    ```
"""
from .client import AsyncRainClient
from .clock import Clock, FixedClock, SystemClock
from .compliance import ComplianceGate, ComplianceRegistry
from .config import Environment, RainSettings, load_settings
from .exceptions import (
    APIError,
    AuthenticationError,
    CardCanceledError,
    CardNotActiveError,
    CardNotFoundError,
    CryptographicError,
    DecryptionError,
    DisplayNameError,
    EnvironmentMismatchError,
    ExternalDependencyError,
    InvalidTransitionError,
    KeyNotConfiguredError,
    LimitExceededError,
    NotFoundError,
    RainIssuingError,
    RateLimitError,
    SessionExpiredError,
    ShippingAddressError,
    StateConflictError,
    TransportError,
    UserNotApprovedError,
    ValidationError,
)
from .ledger import ChargeEvent, RollingLimitLedger
from .lifecycle import CardLifecycle, CardRecord
from .models import (
    Address,
    BillingAddress,
    Card,
    CardLimit,
    CardStatus,
    CardType,
    CreateCardRequest,
    CreateShippingGroupRequest,
    EncryptedData,
    ShippingAddress,
    ShippingGroup,
    ShippingMethod,
    SpendTransaction,
    Transaction,
    TransactionType,
)
from .secure_session import (
    AesGcmFieldCipher,
    FieldCipher,
    PublicKeyring,
    RevealedCardSecrets,
    SecureSessionProtocol,
    Session,
)
from .service import CardService
from .shipping import ShipmentBatch, ShipmentBatcher

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AsyncRainClient",
    "CardService",
    "Clock",
    "FixedClock",
    "SystemClock",
    "ComplianceGate",
    "ComplianceRegistry",
    "Environment",
    "RainSettings",
    "load_settings",
    "ChargeEvent",
    "RollingLimitLedger",
    "CardLifecycle",
    "CardRecord",
    "ShipmentBatch",
    "ShipmentBatcher",
    "AesGcmFieldCipher",
    "FieldCipher",
    "PublicKeyring",
    "RevealedCardSecrets",
    "SecureSessionProtocol",
    "Session",
    # Models
    "Address",
    "BillingAddress",
    "Card",
    "CardLimit",
    "CardStatus",
    "CardType",
    "CreateCardRequest",
    "CreateShippingGroupRequest",
    "EncryptedData",
    "ShippingAddress",
    "ShippingGroup",
    "ShippingMethod",
    "SpendTransaction",
    "Transaction",
    "TransactionType",
    # Errors
    "RainIssuingError",
    "ValidationError",
    "DisplayNameError",
    "ShippingAddressError",
    "StateConflictError",
    "CardNotFoundError",
    "InvalidTransitionError",
    "CardCanceledError",
    "CardNotActiveError",
    "UserNotApprovedError",
    "LimitExceededError",
    "CryptographicError",
    "EnvironmentMismatchError",
    "KeyNotConfiguredError",
    "DecryptionError",
    "SessionExpiredError",
    "ExternalDependencyError",
    "APIError",
    "AuthenticationError",
    "NotFoundError",
    "RateLimitError",
    "TransportError",
]
