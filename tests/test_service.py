"""End-to-end tests for CardService against the in-memory Rain API."""
from __future__ import annotations

import json
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import httpx
import pytest

from rain_helpers import TEST_PAN, TEST_PIN, TUESDAY_MORNING_UTC, public_pem
from rain_issuing import AsyncRainClient, CardService, FixedClock
from rain_issuing.config import RainSettings
from rain_issuing.exceptions import (
    APIError,
    CardCanceledError,
    CardNotActiveError,
    CardNotFoundError,
    DisplayNameError,
    InvalidTransitionError,
    KeyNotConfiguredError,
    LimitExceededError,
    ShippingAddressError,
    StateConflictError,
    UserNotApprovedError,
)
from rain_issuing.models.card import CardStatus, CardType, ShippingAddress
from rain_issuing.models.shipping_group import Address, CreateShippingGroupRequest

NY = ZoneInfo("America/New_York")


def shipping() -> ShippingAddress:
    return ShippingAddress(
        line1="1 Main St",
        city="New York",
        region="NY",
        postal_code="10001",
        country_code="US",
        phone_number="5555550100",
    )


async def issue_virtual(service: CardService, limit: int = 10_000, **kwargs):
    return await service.issue_card(
        "user-approved", CardType.VIRTUAL, limit=limit, full_name="Ada Lovelace", **kwargs
    )


class TestIssueCard:
    async def test_virtual_card(self, service, server):
        record = await issue_virtual(service)
        assert record.status == CardStatus.ACTIVE
        assert record.display_name == "Ada Lovelace"
        assert record.limit == 10_000
        assert record.created_at == TUESDAY_MORNING_UTC
        assert service.get_card(record.card_id) is record
        assert service.available_limit(record.card_id) == 10_000

        body = json.loads(server.last_request().content)
        assert body["configuration"] == {"displayName": "Ada Lovelace"}
        assert body["status"] == "active"

    async def test_activation_required(self, service):
        record = await issue_virtual(service, activation_required=True)
        assert record.status == CardStatus.NOT_ACTIVATED
        with pytest.raises(CardNotActiveError):
            await service.authorize_charge(record.card_id, 100)

        await service.activate_card(record.card_id)
        assert record.status == CardStatus.ACTIVE
        await service.authorize_charge(record.card_id, 100)

    async def test_derived_display_name_is_truncated(self, service):
        record = await service.issue_card(
            "user-approved",
            CardType.VIRTUAL,
            limit=0,
            full_name="Maximilian Alexander Featherstonehaugh",
        )
        assert record.display_name == "Maximilian Alexander Feath"

    async def test_invalid_display_name_never_reaches_api(self, service, server):
        with pytest.raises(DisplayNameError):
            await service.issue_card("user-approved", CardType.VIRTUAL, limit=0, display_name="A" * 27)
        assert server.requests == []

    async def test_physical_card_requires_shipping(self, service, server):
        with pytest.raises(ShippingAddressError):
            await service.issue_card("user-approved", CardType.PHYSICAL, limit=0, full_name="Ada")
        assert server.requests == []

    async def test_unapproved_user(self, service, server):
        with pytest.raises(UserNotApprovedError) as exc_info:
            await service.issue_card("user-pending", CardType.VIRTUAL, limit=0, full_name="Ada")
        assert exc_info.value.application_status == "pending"
        assert exc_info.value.is_retryable
        assert server.requests == []

    async def test_without_compliance_gate_nobody_is_approved(self, client, server, clock):
        service = CardService(client=client, clock=clock)
        with pytest.raises(UserNotApprovedError):
            await issue_virtual(service)
        assert server.requests == []

        service.handle_webhook({
            "resource": "user",
            "action": "updated",
            "body": {"id": "user-approved", "applicationStatus": "approved"},
        })
        record = await issue_virtual(service)
        assert record.user_id == "user-approved"

    async def test_unknown_user_not_approved(self, service):
        with pytest.raises(UserNotApprovedError) as exc_info:
            await service.issue_card("user-unknown", CardType.VIRTUAL, limit=0, full_name="Ada")
        assert exc_info.value.application_status == "unknown"

    async def test_webhook_approval_unblocks_issuance(self, service):
        applied = service.handle_webhook({
            "resource": "user",
            "action": "updated",
            "body": {"id": "user-pending", "applicationStatus": "approved"},
        })
        assert applied
        record = await service.issue_card("user-pending", CardType.VIRTUAL, limit=0, full_name="Ada")
        assert record.user_id == "user-pending"

    async def test_api_failure_tracks_nothing(self, service, server):
        server.fail_next(500, {"message": "down"})
        with pytest.raises(APIError):
            await issue_virtual(service)
        assert service.lifecycle.records() == []

    async def test_bulk_group_is_fixed(self, service):
        record = await service.issue_card(
            "user-approved",
            CardType.PHYSICAL,
            limit=0,
            full_name="Ada",
            shipping=shipping(),
            bulk_shipping_group_id="group-1",
        )
        assert record.bulk_shipping_group_id == "group-1"
        with pytest.raises(StateConflictError):
            record.bulk_shipping_group_id = "group-2"

    async def test_unknown_card(self, service):
        with pytest.raises(CardNotFoundError):
            service.get_card("nope")


class TestLifecycleThroughService:
    async def test_lock_blocks_charges_until_unlocked(self, service, server):
        record = await issue_virtual(service)
        await service.lock_card(record.card_id)
        assert json.loads(server.last_request().content) == {"status": "locked"}
        with pytest.raises(CardNotActiveError):
            await service.authorize_charge(record.card_id, 100)

        await service.unlock_card(record.card_id)
        await service.authorize_charge(record.card_id, 100)

    async def test_cancel_is_final(self, service):
        record = await issue_virtual(service)
        await service.cancel_card(record.card_id)
        with pytest.raises(CardCanceledError) as exc_info:
            await service.unlock_card(record.card_id)
        assert exc_info.value.is_final
        with pytest.raises(CardCanceledError):
            await service.authorize_charge(record.card_id, 1)
        with pytest.raises(CardCanceledError):
            await service.update_limit(record.card_id, 50_000)

    async def test_activate_active_card_rejected(self, service, server):
        record = await issue_virtual(service)
        sent = len(server.requests)
        with pytest.raises(InvalidTransitionError):
            await service.activate_card(record.card_id)
        assert len(server.requests) == sent

    async def test_remote_failure_leaves_status(self, service, server):
        record = await issue_virtual(service)
        server.fail_next(503, {"message": "unavailable"})
        with pytest.raises(APIError):
            await service.lock_card(record.card_id)
        assert record.status == CardStatus.ACTIVE
        await service.authorize_charge(record.card_id, 100)


class TestLimits:
    async def test_limit_enforced(self, service):
        record = await issue_virtual(service, limit=1_000)
        await service.authorize_charge(record.card_id, 600)
        with pytest.raises(LimitExceededError) as exc_info:
            await service.authorize_charge(record.card_id, 500)
        assert exc_info.value.available == 400
        assert service.current_exposure(record.card_id) == 600

    async def test_refund_restores_headroom(self, service):
        record = await issue_virtual(service, limit=1_000)
        await service.authorize_charge(record.card_id, 1_000)
        await service.record_charge(record.card_id, -300)
        assert service.available_limit(record.card_id) == 300

    async def test_exposure_ages_out(self, service, clock):
        record = await issue_virtual(service, limit=1_000)
        await service.authorize_charge(record.card_id, 1_000)
        clock.advance(days=30)
        await service.authorize_charge(record.card_id, 1_000)

    async def test_limit_update_sent_and_applied(self, service, server):
        record = await issue_virtual(service, limit=1_000)
        await service.authorize_charge(record.card_id, 900)
        await service.update_limit(record.card_id, 500)
        assert json.loads(server.last_request().content) == {
            "limit": {"amount": 500, "frequency": "per30DayPeriod"}
        }
        assert service.available_limit(record.card_id) == -400
        with pytest.raises(LimitExceededError):
            await service.authorize_charge(record.card_id, 1)


class TestTransactionIngestion:
    async def test_spends_count_toward_exposure(self, service, server, clock):
        record = await issue_virtual(service)
        authorized = clock.now() - timedelta(hours=2)
        pending = server.add_spend(record.card_id, 2_500, authorized)
        server.add_spend(record.card_id, 9_000, authorized, status="declined")
        server.add_spend("untracked-card", 700, authorized)
        server.transactions["fee-1"] = {"id": "fee-1", "type": "fee", "amount": 300}

        events = await service.ingest_transactions()
        assert [e.event_id for e in events] == [pending["id"]]
        assert events[0].timestamp == authorized
        assert server.last_request().url.params.get_list("type") == ["spend"]
        assert service.current_exposure(record.card_id) == 2_500

    async def test_reingesting_is_idempotent(self, service, server, clock):
        record = await issue_virtual(service)
        server.add_spend(record.card_id, 2_500, clock.now() - timedelta(hours=2))
        await service.ingest_transactions()
        await service.ingest_transactions()
        assert len(service.ledger.events(record.card_id)) == 1
        assert service.current_exposure(record.card_id) == 2_500

    async def test_ingested_spend_limits_authorizations(self, service, server, clock):
        record = await issue_virtual(service, limit=1_000)
        server.add_spend(record.card_id, 800, clock.now() - timedelta(minutes=5))
        await service.ingest_transactions()
        with pytest.raises(LimitExceededError):
            await service.authorize_charge(record.card_id, 300)

    async def test_settled_amount_is_adjusted(self, service, server, clock):
        record = await issue_virtual(service)
        txn = server.add_spend(record.card_id, 2_500, clock.now() - timedelta(hours=2))
        await service.ingest_transactions()

        txn.update(amount=2_800, status="completed")
        events = await service.ingest_transactions()
        assert [(e.event_id, e.amount) for e in events] == [(f"{txn['id']}:adjustment", 300)]
        assert service.current_exposure(record.card_id) == 2_800

    async def test_reversal_releases_exposure(self, service, server, clock):
        record = await issue_virtual(service)
        authorized = clock.now() - timedelta(hours=2)
        txn = server.add_spend(record.card_id, 2_500, authorized)
        await service.ingest_transactions()

        txn["status"] = "reversed"
        await service.ingest_transactions()
        assert service.current_exposure(record.card_id) == 0
        assert {e.timestamp for e in service.ledger.events(record.card_id)} == {authorized}

    async def test_reversal_of_unseen_spend_ignored(self, service, server, clock):
        record = await issue_virtual(service)
        server.add_spend(record.card_id, 2_500, clock.now(), status="reversed")
        assert await service.ingest_transactions() == []
        assert service.ledger.events(record.card_id) == ()

    async def test_canceled_card_skipped(self, service, server, clock):
        record = await issue_virtual(service)
        await service.cancel_card(record.card_id)
        server.add_spend(record.card_id, 2_500, clock.now())
        assert await service.ingest_transactions() == []


class TestSecrets:
    async def test_reveal_card_secrets(self, service):
        record = await issue_virtual(service)
        revealed = await service.reveal_card_secrets(record.card_id)
        assert revealed.pan == TEST_PAN
        assert revealed.last4 == record.last4

    async def test_reveal_pin(self, service):
        record = await issue_virtual(service)
        assert await service.reveal_pin(record.card_id) == TEST_PIN

    async def test_set_pin(self, service, server):
        record = await issue_virtual(service)
        await service.set_pin(record.card_id, "2468")
        assert server.pins[record.card_id] == "242468FFFFFFFFFF"

    async def test_canceled_card_secrets_rejected(self, service, server):
        record = await issue_virtual(service)
        await service.cancel_card(record.card_id)
        sent = len(server.requests)
        with pytest.raises(CardCanceledError):
            await service.reveal_card_secrets(record.card_id)
        with pytest.raises(CardCanceledError):
            await service.reveal_pin(record.card_id)
        with pytest.raises(CardCanceledError):
            await service.set_pin(record.card_id, "1234")
        assert len(server.requests) == sent

    async def test_no_keys_configured(self, client, compliance, clock):
        service = CardService(client=client, compliance=compliance, clock=clock)
        record = await issue_virtual(service)
        with pytest.raises(KeyNotConfiguredError):
            await service.reveal_card_secrets(record.card_id)


class TestShipping:
    async def _physical(self, service, clock, at: datetime, group: str | None):
        clock.set(at)
        return await service.issue_card(
            "user-approved",
            CardType.PHYSICAL,
            limit=0,
            full_name="Ada",
            shipping=shipping(),
            bulk_shipping_group_id=group,
        )

    async def test_shipment_batches(self, service, clock):
        a = await self._physical(service, clock, datetime(2024, 3, 5, 11, 30, tzinfo=NY), "g1")
        b = await self._physical(service, clock, datetime(2024, 3, 5, 11, 55, tzinfo=NY), "g1")
        c = await self._physical(service, clock, datetime(2024, 3, 5, 12, 15, tzinfo=NY), "g1")
        await issue_virtual(service)

        batches = service.shipment_batches()
        assert [batch.card_ids for batch in batches] == [(a.card_id, b.card_id), (c.card_id,)]
        assert batches[0].is_bulk
        assert service.shipment_batch_for(b.card_id) == batches[0]
        assert service.shipment_batch_for(c.card_id).cutoff == datetime(2024, 3, 6, 12, tzinfo=NY)

    async def test_create_shipping_group(self, service):
        group = await service.create_shipping_group(CreateShippingGroupRequest(
            recipient_first_name="Ada",
            address=Address(line1="1 Main St", city="New York", region="NY",
                            postal_code="10001", country_code="US"),
        ))
        assert group.created_at == TUESDAY_MORNING_UTC
        assert service.shipping_group(group.id) == group
        assert service.shipping_group("other") is None


class TestFromSettings:
    async def test_wires_components(self, dev_private_key, server, api_key, compliance):
        settings = RainSettings(
            api_key=api_key,
            dev_public_key_pem=public_pem(dev_private_key).decode(),
            session_ttl_seconds=60,
        )
        clock = FixedClock(TUESDAY_MORNING_UTC)
        client = AsyncRainClient.from_settings(settings, transport=httpx.MockTransport(server.handler))
        async with CardService.from_settings(
            settings, client=client, compliance=compliance, clock=clock
        ) as service:
            record = await issue_virtual(service)
            revealed = await service.reveal_card_secrets(record.card_id)
            assert revealed.cvc
            assert service.batcher.next_cutoff() == datetime(2024, 3, 5, 12, tzinfo=NY)
            assert service.ledger.limit(record.card_id) == 10_000
            assert clock.now() - record.created_at == timedelta(0)
