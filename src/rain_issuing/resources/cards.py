"""Cards resource for rain-issuing."""
from __future__ import annotations

from typing import Optional

from ..models.card import (
    Card,
    CardPin,
    CardSecrets,
    CreateCardRequest,
    EncryptedData,
    ListCardsParams,
    ProcessorDetails,
    UpdateCardPinRequest,
    UpdateCardRequest,
)
from .base import AsyncBaseResource

SESSION_HEADER = "SessionId"


class AsyncCardsResource(AsyncBaseResource):
    """Async resource for card operations.

    Example:
        ```python
        async with AsyncRainClient(api_key="...") as client:
            card = await client.cards.create_for_user(
                "user-id",
                CreateCardRequest(type=CardType.VIRTUAL, limit=CardLimit(amount=10_000)),
            )
            card = await client.cards.update(card.id, UpdateCardRequest(status=CardStatus.LOCKED))
        ```
    """

    async def create_for_user(self, user_id: str, request: CreateCardRequest) -> Card:
        """Issue a card to a user.

        Args:
            user_id: Owning user
            request: Card type, limit, configuration and shipping

        Returns:
            The created card
        """
        data = await self._post(f"/issuing/users/{user_id}/cards", request.to_dict())
        return Card.model_validate(data)

    async def get(self, card_id: str) -> Card:
        data = await self._get(f"/issuing/cards/{card_id}")
        return Card.model_validate(data)

    async def list(self, params: Optional[ListCardsParams] = None) -> list[Card]:
        """List cards, optionally filtered by company, user or status."""
        query = params.to_dict() if params else None
        data = await self._get("/issuing/cards", params=query)
        return [Card.model_validate(item) for item in data or []]

    async def update(self, card_id: str, request: UpdateCardRequest) -> Card:
        """Update status, limit, billing or configuration."""
        data = await self._patch(f"/issuing/cards/{card_id}", request.to_dict())
        return Card.model_validate(data)

    async def get_secrets(self, card_id: str, session_id: str) -> CardSecrets:
        """Fetch the encrypted PAN and CVC for a session."""
        data = await self._get(
            f"/issuing/cards/{card_id}/secrets",
            headers={SESSION_HEADER: session_id},
        )
        return CardSecrets.model_validate(data)

    async def get_pin(self, card_id: str, session_id: str) -> CardPin:
        data = await self._get(
            f"/issuing/cards/{card_id}/pin",
            headers={SESSION_HEADER: session_id},
        )
        return CardPin.model_validate(data)

    async def update_pin(self, card_id: str, encrypted_pin: EncryptedData, session_id: str) -> None:
        """Set a new PIN, encrypted under the session's secret."""
        request = UpdateCardPinRequest(encrypted_pin=encrypted_pin)
        await self._put(
            f"/issuing/cards/{card_id}/pin",
            request.to_dict(),
            headers={SESSION_HEADER: session_id},
        )

    async def get_processor_details(self, card_id: str) -> ProcessorDetails:
        data = await self._get(f"/issuing/cards/{card_id}/processorDetails")
        return ProcessorDetails.model_validate(data)
