"""
Tests for billing account resolution priority.
"""

import pytest

from reconciler.models.enums import BillingProvider, SubscriptionTier
from reconciler.services.account_resolver import AccountResolver, ResolutionSource


STRIPE = BillingProvider.STRIPE
LEMONSQUEEZY = BillingProvider.LEMONSQUEEZY


class TestResolutionPriority:

    @pytest.mark.asyncio
    async def test_metadata_user_id_wins(self, create_account, session_factory):
        await create_account("user_meta")
        await create_account(
            "user_by_sub",
            provider=STRIPE,
            tier=SubscriptionTier.PRO,
            external_subscription_id="sub_1",
            external_customer_id="cus_1",
        )

        async with session_factory() as session:
            resolution = await AccountResolver(session).resolve(
                STRIPE, user_id="user_meta", subscription_id="sub_1", customer_id="cus_1"
            )

        assert resolution.user_id == "user_meta"
        assert resolution.source == ResolutionSource.METADATA_USER_ID

    @pytest.mark.asyncio
    async def test_subscription_id_before_customer_id(self, create_account, session_factory):
        await create_account("user_by_sub", provider=STRIPE, external_subscription_id="sub_1")
        await create_account("user_by_cus", provider=STRIPE, external_customer_id="cus_1")

        async with session_factory() as session:
            resolution = await AccountResolver(session).resolve(
                STRIPE, subscription_id="sub_1", customer_id="cus_1"
            )

        assert resolution.user_id == "user_by_sub"
        assert resolution.source == ResolutionSource.SUBSCRIPTION_ID

    @pytest.mark.asyncio
    async def test_customer_id_fallback(self, create_account, session_factory):
        await create_account("user_by_cus", provider=STRIPE, external_customer_id="cus_1")

        async with session_factory() as session:
            resolution = await AccountResolver(session).resolve(
                STRIPE, subscription_id="sub_unknown", customer_id="cus_1"
            )

        assert resolution.user_id == "user_by_cus"
        assert resolution.source == ResolutionSource.CUSTOMER_ID

    @pytest.mark.asyncio
    async def test_unknown_metadata_user_falls_through(self, create_account, session_factory):
        await create_account("user_by_sub", provider=STRIPE, external_subscription_id="sub_1")

        async with session_factory() as session:
            resolution = await AccountResolver(session).resolve(
                STRIPE, user_id="deleted_user", subscription_id="sub_1"
            )

        assert resolution.user_id == "user_by_sub"


class TestResolutionFailure:

    @pytest.mark.asyncio
    async def test_no_identifiers(self, session_factory):
        async with session_factory() as session:
            resolution = await AccountResolver(session).resolve(STRIPE)

        assert resolution.resolved is False
        assert resolution.source is None

    @pytest.mark.asyncio
    async def test_external_ids_scoped_to_provider(self, create_account, session_factory):
        await create_account("user_ls", provider=LEMONSQUEEZY, external_customer_id="42")

        async with session_factory() as session:
            resolution = await AccountResolver(session).resolve(STRIPE, customer_id="42")

        assert resolution.resolved is False

    @pytest.mark.asyncio
    async def test_never_creates_accounts(self, session_factory, get_account):
        async with session_factory() as session:
            await AccountResolver(session).resolve(STRIPE, user_id="ghost")

        assert await get_account("ghost") is None
