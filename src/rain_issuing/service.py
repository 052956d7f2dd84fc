"""Card service tying validation, compliance, transport and local state together."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Union

from .client import AsyncRainClient
from .clock import Clock, SystemClock
from .compliance import ComplianceGate, ComplianceRegistry
from .config import RainSettings
from .exceptions import KeyNotConfiguredError, UserNotApprovedError
from .ledger import ChargeEvent, RollingLimitLedger
from .lifecycle import CardLifecycle, CardRecord, initial_status
from .models.card import (
    BillingAddress,
    CardConfiguration,
    CardLimit,
    CardStatus,
    CardType,
    CreateCardRequest,
    LimitFrequency,
    ShippingAddress,
    UpdateCardRequest,
)
from .models.shipping_group import CreateShippingGroupRequest, ShippingGroup
from .models.transaction import (
    ListTransactionsParams,
    SpendTransaction,
    SpendTransactionStatus,
    TransactionType,
)
from .models.webhook import ComplianceWebhook
from .secure_session import PublicKeyring, RevealedCardSecrets, SecureSessionProtocol
from .shipping import ShipmentBatch, ShipmentBatcher
from .validation import (
    resolve_display_name,
    validate_create_card_request,
    validate_limit_amount,
)

logger = logging.getLogger(__name__)


class CardService:
    """
    High-level service for Rain card operations.

    Validates requests before they leave the process, keeps the local card
    state machine and spend ledger in step with the API, and wraps the
    secure-session protocol for secret retrieval.
    """

    def __init__(
        self,
        client: AsyncRainClient,
        sessions: Optional[SecureSessionProtocol] = None,
        compliance: Optional[ComplianceGate] = None,
        batcher: Optional[ShipmentBatcher] = None,
        clock: Optional[Clock] = None,
        ledger: Optional[RollingLimitLedger] = None,
    ) -> None:
        self._client = client
        self._clock = clock or SystemClock()
        self._ledger = ledger or RollingLimitLedger(self._clock)
        self._lifecycle = CardLifecycle(self._ledger, self._clock)
        self._sessions = sessions
        # Without a gate no user is approved until a webhook says so
        self._compliance: ComplianceGate = compliance if compliance is not None else ComplianceRegistry()
        self._batcher = batcher or ShipmentBatcher(clock=self._clock)
        self._shipping_groups: dict[str, ShippingGroup] = {}

    @classmethod
    def from_settings(
        cls,
        settings: RainSettings,
        client: Optional[AsyncRainClient] = None,
        compliance: Optional[ComplianceGate] = None,
        clock: Optional[Clock] = None,
    ) -> "CardService":
        """Wire a service from settings; keys are optional until secrets are needed."""
        clock = clock or SystemClock()
        keyring = PublicKeyring.from_settings(settings)
        ttl = (
            timedelta(seconds=settings.session_ttl_seconds)
            if settings.session_ttl_seconds is not None
            else None
        )
        return cls(
            client=client or AsyncRainClient.from_settings(settings),
            sessions=SecureSessionProtocol(keyring, clock=clock, session_ttl=ttl),
            compliance=compliance,
            batcher=ShipmentBatcher.from_settings(settings, clock),
            clock=clock,
        )

    @property
    def lifecycle(self) -> CardLifecycle:
        return self._lifecycle

    @property
    def ledger(self) -> RollingLimitLedger:
        return self._ledger

    @property
    def batcher(self) -> ShipmentBatcher:
        return self._batcher

    # ==================== Issuance ====================

    async def issue_card(
        self,
        user_id: str,
        card_type: CardType,
        limit: int,
        display_name: Optional[str] = None,
        full_name: Optional[str] = None,
        shipping: Optional[ShippingAddress] = None,
        bulk_shipping_group_id: Optional[str] = None,
        billing: Optional[BillingAddress] = None,
        activation_required: bool = False,
        product_id: Optional[str] = None,
    ) -> CardRecord:
        """
        Issue a card to a user and start tracking it.

        Args:
            user_id: Owning user
            card_type: virtual or physical
            limit: Rolling 30-day limit in minor units
            display_name: Name printed on the card; derived from
                ``full_name`` when omitted
            full_name: User's full name, used to derive the display name
            shipping: Shipping address; required for physical cards only
            bulk_shipping_group_id: Optional bulk group; fixed for the
                card's lifetime
            billing: Optional billing address
            activation_required: Start in notActivated instead of active
            product_id: Optional card product

        Returns:
            The local CardRecord

        Raises:
            ValidationError: Invalid name, shipping or limit
            UserNotApprovedError: Compliance gate says no
            ExternalDependencyError: API failure
        """
        validate_limit_amount(limit)
        configuration = None
        if display_name is not None or full_name is not None or product_id is not None:
            name = None
            if display_name is not None or full_name is not None:
                name = resolve_display_name(display_name, full_name)
            configuration = CardConfiguration(display_name=name, product_id=product_id)

        request = CreateCardRequest(
            type=card_type,
            status=initial_status(activation_required),
            limit=CardLimit(amount=limit, frequency=LimitFrequency.PER_30_DAY_PERIOD),
            configuration=configuration,
            shipping=shipping,
            bulk_shipping_group_id=bulk_shipping_group_id,
            billing=billing,
        )
        validate_create_card_request(request)

        if not self._compliance.is_user_approved(user_id):
            status = None
            if isinstance(self._compliance, ComplianceRegistry):
                status = self._compliance.status_of(user_id)
            raise UserNotApprovedError(user_id, status)

        card = await self._client.cards.create_for_user(user_id, request)
        record = CardRecord.from_card(
            card,
            created_at=self._clock.now(),
            display_name=configuration.display_name if configuration else None,
            bulk_shipping_group_id=bulk_shipping_group_id,
            limit=limit,
        )
        await self._lifecycle.register(record)
        return record

    def get_card(self, card_id: str) -> CardRecord:
        return self._lifecycle.get(card_id)

    # ==================== Status & limits ====================

    def _remote_status(self, card_id: str, status: CardStatus):
        async def apply() -> None:
            await self._client.cards.update(card_id, UpdateCardRequest(status=status))
        return apply

    async def activate_card(self, card_id: str) -> CardRecord:
        """Activate a notActivated card once the holder's identity is confirmed."""
        return await self._lifecycle.activate(card_id, self._remote_status(card_id, CardStatus.ACTIVE))

    async def lock_card(self, card_id: str) -> CardRecord:
        return await self._lifecycle.lock(card_id, self._remote_status(card_id, CardStatus.LOCKED))

    async def unlock_card(self, card_id: str) -> CardRecord:
        return await self._lifecycle.unlock(card_id, self._remote_status(card_id, CardStatus.ACTIVE))

    async def cancel_card(self, card_id: str) -> CardRecord:
        """Cancel a card. This is permanent."""
        return await self._lifecycle.cancel(card_id, self._remote_status(card_id, CardStatus.CANCELED))

    async def update_limit(self, card_id: str, amount: int) -> CardRecord:
        """
        Change the rolling 30-day limit.

        Takes effect for the next authorization; earlier charges are not
        re-evaluated.
        """
        async def apply() -> None:
            await self._client.cards.update(
                card_id,
                UpdateCardRequest(limit=CardLimit(amount=amount, frequency=LimitFrequency.PER_30_DAY_PERIOD)),
            )

        return await self._lifecycle.update_limit(card_id, amount, apply)

    # ==================== Charges ====================

    async def authorize_charge(
        self,
        card_id: str,
        amount: int,
        at: Optional[datetime] = None,
        event_id: Optional[str] = None,
    ) -> ChargeEvent:
        """Authorize and record a charge against the rolling limit."""
        self._lifecycle.ensure_not_canceled(card_id, operation="authorization")
        return await self._ledger.authorize(card_id, amount, at, event_id)

    async def record_charge(
        self,
        card_id: str,
        amount: int,
        at: Optional[datetime] = None,
        event_id: Optional[str] = None,
    ) -> ChargeEvent:
        """Record a charge or refund authorized elsewhere (no limit check)."""
        self._lifecycle.get(card_id)
        return await self._ledger.record(card_id, amount, at, event_id)

    def available_limit(self, card_id: str, as_of: Optional[datetime] = None) -> int:
        return self._ledger.available(card_id, as_of)

    def current_exposure(self, card_id: str, as_of: Optional[datetime] = None) -> int:
        return self._ledger.current_exposure(card_id, as_of)

    # ==================== Transactions ====================

    async def ingest_transaction(self, txn: SpendTransaction) -> Optional[ChargeEvent]:
        """
        Mirror one spend transaction into its card's ledger.

        Pending and completed spends count from their authorization time under
        the transaction id. A settled amount that differs from the pending one
        is recorded as an adjustment. A reversal of an ingested spend is
        recorded as an offsetting refund at the original time, so it leaves
        every window the spend was in. Re-ingesting is idempotent.

        Returns:
            The ledger event for this transaction, or None when it does not
            affect exposure (declined, zero, or a reversal of an unseen spend)
        """
        self._lifecycle.get(txn.card_id)
        original = self._ledger.find_event(txn.card_id, txn.id)

        if txn.counts_toward_limit:
            if original is None:
                if txn.amount == 0:
                    return None
                return await self._ledger.record(txn.card_id, txn.amount, txn.authorized_at, event_id=txn.id)
            delta = txn.amount - original.amount
            if delta == 0:
                return original
            return await self._ledger.record(
                txn.card_id, delta, original.timestamp, event_id=f"{txn.id}:adjustment"
            )

        if txn.status == SpendTransactionStatus.REVERSED and original is not None:
            adjustment = self._ledger.find_event(txn.card_id, f"{txn.id}:adjustment")
            net = original.amount + (adjustment.amount if adjustment else 0)
            if net == 0:
                return None
            return await self._ledger.record(
                txn.card_id, -net, original.timestamp, event_id=f"{txn.id}:reversal"
            )
        return None

    async def ingest_transactions(
        self,
        params: Optional[ListTransactionsParams] = None,
    ) -> list[ChargeEvent]:
        """
        Fetch spend transactions and ingest those on tracked cards.

        Transactions on untracked or canceled cards are skipped.
        """
        params = params or ListTransactionsParams()
        if params.type is None:
            params = params.model_copy(update={"type": [TransactionType.SPEND]})
        transactions = await self._client.transactions.list(params)

        tracked = {record.card_id: record for record in self._lifecycle.records()}
        events: list[ChargeEvent] = []
        for txn in transactions:
            if not isinstance(txn, SpendTransaction):
                continue
            record = tracked.get(txn.card_id)
            if record is None or record.is_canceled:
                logger.debug("Skipping transaction %s for card %s", txn.id, txn.card_id)
                continue
            event = await self.ingest_transaction(txn)
            if event is not None:
                events.append(event)

        logger.info("Ingested %d of %d transactions", len(events), len(transactions))
        return events

    # ==================== Secrets ====================

    def _require_sessions(self) -> SecureSessionProtocol:
        if self._sessions is None:
            raise KeyNotConfiguredError(self._client.environment.value)
        return self._sessions

    async def reveal_card_secrets(self, card_id: str) -> RevealedCardSecrets:
        """
        Fetch and decrypt a card's PAN and CVC.

        Raises:
            CardCanceledError: Card is canceled
            CryptographicError: Key missing or payload cannot be decrypted
        """
        self._lifecycle.ensure_not_canceled(card_id, operation="secret retrieval")
        sessions = self._require_sessions()
        environment = self._client.environment
        session = sessions.create_session(environment)
        secrets = await self._client.cards.get_secrets(card_id, session.session_id)
        revealed = sessions.decrypt_card_secrets(session, secrets, environment)
        logger.info("Revealed secrets for card %s", card_id)
        return revealed

    async def reveal_pin(self, card_id: str) -> str:
        self._lifecycle.ensure_not_canceled(card_id, operation="PIN retrieval")
        sessions = self._require_sessions()
        environment = self._client.environment
        session = sessions.create_session(environment)
        pin = await self._client.cards.get_pin(card_id, session.session_id)
        return sessions.decrypt_pin(session, pin, environment)

    async def set_pin(self, card_id: str, pin: str) -> None:
        """Encrypt and set a new PIN."""
        self._lifecycle.ensure_not_canceled(card_id, operation="PIN update")
        sessions = self._require_sessions()
        environment = self._client.environment
        session = sessions.create_session(environment)
        encrypted = sessions.encrypt_pin(session, pin, environment)
        await self._client.cards.update_pin(card_id, encrypted, session.session_id)
        logger.info("Updated PIN for card %s", card_id)

    # ==================== Shipping ====================

    async def create_shipping_group(self, request: CreateShippingGroupRequest) -> ShippingGroup:
        group = await self._client.shipping_groups.create(request)
        if group.created_at is None:
            group = group.model_copy(update={"created_at": self._clock.now()})
        self._shipping_groups[group.id] = group
        return group

    def shipping_group(self, group_id: str) -> Optional[ShippingGroup]:
        return self._shipping_groups.get(group_id)

    def shipment_batches(self) -> list[ShipmentBatch]:
        """Shipment batches for every tracked physical card."""
        return self._batcher.plan(self._lifecycle.records())

    def shipment_batch_for(self, card_id: str) -> Optional[ShipmentBatch]:
        return self._batcher.batch_for(self._lifecycle.get(card_id), self._lifecycle.records())

    # ==================== Webhooks ====================

    def handle_webhook(self, payload: Union[ComplianceWebhook, Mapping[str, Any]]) -> bool:
        """Feed a user webhook into the compliance registry, if one is attached."""
        if isinstance(self._compliance, ComplianceRegistry):
            return self._compliance.apply_webhook(payload)
        return False

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self) -> "CardService":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
