"""
Marketplace settlement tests.

Walks listings through the transaction state machine and checks that the
reservation model keeps every balance non-negative and credits conserved.
"""
from decimal import Decimal

import pytest

from carbonex.errors import IllegalTransition, InsufficientBalance, NotFound, StoreUnavailable, ValidationError
from carbonex.models.credit import TRANSACTION_TRANSITIONS, CreditTransaction, TransactionStatus
from carbonex.models.organisation import Organisation
from carbonex.sentry_config import drop_expected_errors
from carbonex.services.marketplace_service import MarketplaceService

from conftest import make_org, make_org_with_trips, reload


async def test_listing_reserves_seller_credits(db):
    seller = await make_org(db, tradable=100, earned=100)

    tx = await MarketplaceService(db).create_listing(seller.id, 40, 2)

    assert tx.status == TransactionStatus.PENDING
    assert tx.buyer_org_id is None
    assert tx.seller_org_name == seller.name
    assert seller.tradable_credits == Decimal("60")


async def test_full_purchase_moves_cash_and_credits(db, session_factory):
    seller = await make_org_with_trips(db, 100, name="Org A")
    buyer = await make_org(db, name="Org B", cash=1000)
    market = MarketplaceService(db)

    tx = await market.create_listing(seller.id, 40, 2)
    await market.approve(tx.id)
    await market.claim(tx.id, buyer.id)
    settled = await market.settle(tx.id)

    assert settled.status == TransactionStatus.COMPLETED
    assert settled.completed_at is not None

    seller_row = await reload(session_factory, Organisation, seller.id)
    buyer_row = await reload(session_factory, Organisation, buyer.id)
    assert seller_row.tradable_credits == Decimal("60")
    assert seller_row.cash_balance == Decimal("80")
    assert buyer_row.tradable_credits == Decimal("40")
    assert buyer_row.cash_balance == Decimal("920")


async def test_settle_with_insufficient_cash_releases_claim(db, session_factory):
    seller = await make_org(db, tradable=60, earned=60)
    buyer = await make_org(db, cash=50)
    market = MarketplaceService(db)

    tx = await market.create_listing(seller.id, 30, 3)
    await market.approve(tx.id)
    await market.claim(tx.id, buyer.id)

    with pytest.raises(InsufficientBalance):
        await market.settle(tx.id)

    row = await reload(session_factory, CreditTransaction, tx.id)
    assert row.status == TransactionStatus.APPROVED
    assert row.buyer_org_id is None

    seller_row = await reload(session_factory, Organisation, seller.id)
    buyer_row = await reload(session_factory, Organisation, buyer.id)
    assert seller_row.tradable_credits == Decimal("30")
    assert seller_row.cash_balance == Decimal("0")
    assert buyer_row.cash_balance == Decimal("50")
    assert buyer_row.tradable_credits == Decimal("0")


async def test_listing_can_be_claimed_again_after_failed_settlement(db):
    seller = await make_org(db, tradable=10, earned=10)
    poor = await make_org(db, cash=1)
    rich = await make_org(db, cash=500)
    market = MarketplaceService(db)

    tx = await market.create_listing(seller.id, 10, 5)
    await market.approve(tx.id)
    await market.claim(tx.id, poor.id)
    with pytest.raises(InsufficientBalance):
        await market.settle(tx.id)

    assert [t.id for t in await market.list_available()] == [tx.id]

    await market.claim(tx.id, rich.id)
    settled = await market.settle(tx.id)
    assert settled.status == TransactionStatus.COMPLETED
    assert rich.cash_balance == Decimal("450")


async def test_listing_more_than_tradable_is_rejected(db):
    seller = await make_org(db, tradable=5, earned=5)

    with pytest.raises(InsufficientBalance) as exc_info:
        await MarketplaceService(db).create_listing(seller.id, 6, 1)

    assert exc_info.value.to_dict()["error"] == "insufficient_balance"
    assert seller.tradable_credits == Decimal("5")


@pytest.mark.parametrize("amount,price", [(0, 1), (-3, 1), (5, 0), (5, -1), ("abc", 1), (5, "NaN"), ("0.00001", 1)])
async def test_non_positive_amount_or_price_is_rejected(db, amount, price):
    seller = await make_org(db, tradable=100, earned=100)

    with pytest.raises(ValidationError):
        await MarketplaceService(db).create_listing(seller.id, amount, price)


@pytest.mark.parametrize("amount,price", [
    (1, Decimal("1e30")),
    (1, 1e30),
    (1, Decimal("1e12")),
    (1, Decimal("999999999999.999")),
    (Decimal("1e10"), 1),
])
async def test_amount_or_price_too_large_for_ledger_is_rejected(db, session_factory, amount, price):
    seller = await make_org(db, tradable=100, earned=100)

    with pytest.raises(ValidationError) as exc_info:
        await MarketplaceService(db).create_listing(seller.id, amount, price)

    assert exc_info.value.to_dict()["error"] == "validation_error"
    row = await reload(session_factory, Organisation, seller.id)
    assert row.tradable_credits == Decimal("100")


async def test_reject_restores_reservation(db):
    seller = await make_org(db, tradable=100, earned=100)
    market = MarketplaceService(db)

    tx = await market.create_listing(seller.id, 25, 1)
    rejected = await market.reject(tx.id)

    assert rejected.status == TransactionStatus.REJECTED
    assert seller.tradable_credits == Decimal("100")


async def test_rejected_transaction_cannot_be_approved(db):
    seller = await make_org(db, tradable=10, earned=10)
    market = MarketplaceService(db)
    tx = await market.create_listing(seller.id, 10, 1)
    await market.reject(tx.id)

    with pytest.raises(IllegalTransition) as exc_info:
        await market.approve(tx.id)

    assert exc_info.value.current_status == "rejected"


async def test_settle_is_idempotent(db):
    seller = await make_org(db, tradable=20, earned=20)
    buyer = await make_org(db, cash=100)
    market = MarketplaceService(db)

    tx = await market.create_listing(seller.id, 10, 2)
    await market.approve(tx.id)
    await market.claim(tx.id, buyer.id)
    await market.settle(tx.id)
    again = await market.settle(tx.id)

    assert again.status == TransactionStatus.COMPLETED
    assert buyer.cash_balance == Decimal("80")
    assert buyer.tradable_credits == Decimal("10")
    assert seller.cash_balance == Decimal("20")


async def test_settle_pending_listing_is_illegal(db):
    seller = await make_org(db, tradable=10, earned=10)
    market = MarketplaceService(db)
    tx = await market.create_listing(seller.id, 10, 1)

    with pytest.raises(IllegalTransition) as exc_info:
        await market.settle(tx.id)

    assert exc_info.value.current_status == "pending"


async def test_second_claim_is_illegal(db):
    seller = await make_org(db, tradable=10, earned=10)
    first = await make_org(db, cash=100)
    second = await make_org(db, cash=100)
    market = MarketplaceService(db)
    tx = await market.create_listing(seller.id, 10, 1)
    await market.approve(tx.id)
    await market.claim(tx.id, first.id)

    with pytest.raises(IllegalTransition) as exc_info:
        await market.claim(tx.id, second.id)

    assert exc_info.value.current_status == "pending_purchase"
    assert tx.buyer_org_id == first.id


async def test_claiming_unapproved_listing_is_illegal(db):
    seller = await make_org(db, tradable=10, earned=10)
    buyer = await make_org(db, cash=100)
    market = MarketplaceService(db)
    tx = await market.create_listing(seller.id, 10, 1)

    with pytest.raises(IllegalTransition):
        await market.claim(tx.id, buyer.id)


async def test_seller_cannot_buy_own_listing(db):
    seller = await make_org(db, tradable=10, earned=10, cash=100)
    market = MarketplaceService(db)
    tx = await market.create_listing(seller.id, 10, 1)
    await market.approve(tx.id)

    with pytest.raises(ValidationError):
        await market.claim(tx.id, seller.id)

    assert tx.status == TransactionStatus.APPROVED


async def test_cancel_returns_listing_to_market(db):
    seller = await make_org(db, tradable=10, earned=10)
    buyer = await make_org(db, cash=100)
    other = await make_org(db, cash=100)
    market = MarketplaceService(db)
    tx = await market.create_listing(seller.id, 10, 1)
    await market.approve(tx.id)
    await market.claim(tx.id, buyer.id)

    with pytest.raises(NotFound):
        await market.cancel(tx.id, buyer_org_id=other.id)

    cancelled = await market.cancel(tx.id, buyer_org_id=buyer.id)

    assert cancelled.status == TransactionStatus.APPROVED
    assert cancelled.buyer_org_id is None
    assert seller.tradable_credits == Decimal("0")


async def test_direct_transfer_settles_on_approval(db):
    seller = await make_org(db, tradable=50, earned=50)
    buyer = await make_org(db, cash=200)
    market = MarketplaceService(db)

    tx = await market.create_transfer(seller.id, buyer.id, 20, "1.50")
    assert tx.buyer_org_id == buyer.id
    assert seller.tradable_credits == Decimal("30")

    done = await market.approve(tx.id)

    assert done.status == TransactionStatus.COMPLETED
    assert buyer.tradable_credits == Decimal("20")
    assert buyer.cash_balance == Decimal("170")
    assert seller.cash_balance == Decimal("30")


async def test_direct_transfer_to_self_is_rejected(db):
    org = await make_org(db, tradable=50, earned=50)

    with pytest.raises(ValidationError):
        await MarketplaceService(db).create_transfer(org.id, org.id, 10, 1)


async def test_direct_transfer_without_buyer_funds_stays_pending(db):
    seller = await make_org(db, tradable=50, earned=50)
    buyer = await make_org(db, cash=1)
    market = MarketplaceService(db)
    tx = await market.create_transfer(seller.id, buyer.id, 20, 1)

    with pytest.raises(InsufficientBalance):
        await market.approve(tx.id)

    assert (await market.require(tx.id)).status == TransactionStatus.PENDING


async def test_unknown_transaction_is_not_found(db):
    with pytest.raises(NotFound):
        await MarketplaceService(db).approve("missing")


async def test_list_available_hides_own_and_claimed_listings(db):
    seller = await make_org(db, tradable=30, earned=30)
    buyer = await make_org(db, cash=100)
    market = MarketplaceService(db)
    open_tx = await market.create_listing(seller.id, 10, 2)
    claimed = await market.create_listing(seller.id, 10, 1)
    await market.create_listing(seller.id, 10, 3)
    for tx in (open_tx, claimed):
        await market.approve(tx.id)
    await market.claim(claimed.id, buyer.id)

    assert [t.id for t in await market.list_available()] == [open_tx.id]
    assert await market.list_available(exclude_org_id=seller.id) == []
    assert len(await market.history(seller.id)) == 3
    assert [t.id for t in await market.history(buyer.id)] == [claimed.id]


async def test_credits_are_conserved_across_a_trading_sequence(db, session_factory):
    a = await make_org(db, tradable=100, earned=100, cash=1000)
    b = await make_org(db, tradable=50, earned=50, cash=1000)
    c = await make_org(db, cash=10)
    market = MarketplaceService(db)

    t1 = await market.create_listing(a.id, 30, 2)
    t2 = await market.create_listing(b.id, 20, 1)
    t3 = await market.create_listing(a.id, 15, 1)
    await market.approve(t1.id)
    await market.approve(t2.id)
    await market.reject(t3.id)
    await market.claim(t1.id, b.id)
    await market.settle(t1.id)
    await market.claim(t2.id, c.id)
    with pytest.raises(InsufficientBalance):
        await market.settle(t2.id)
    t4 = await market.create_transfer(b.id, a.id, 5, 10)
    await market.approve(t4.id)

    open_reserved = sum(
        (tx.credit_amount for tx in await market.list_by_status(
            TransactionStatus.PENDING, TransactionStatus.APPROVED, TransactionStatus.PENDING_PURCHASE,
        )),
        Decimal("0"),
    )
    orgs = [await reload(session_factory, Organisation, org.id) for org in (a, b, c)]

    assert sum((o.tradable_credits for o in orgs), Decimal("0")) + open_reserved == Decimal("150")
    assert sum((o.cash_balance for o in orgs), Decimal("0")) == Decimal("2010")
    for org in orgs:
        assert org.tradable_credits >= 0
        assert org.cash_balance >= 0


def test_completed_and_rejected_are_terminal():
    assert TRANSACTION_TRANSITIONS[TransactionStatus.COMPLETED] == frozenset()
    assert TRANSACTION_TRANSITIONS[TransactionStatus.REJECTED] == frozenset()

    tx = CreditTransaction(
        seller_org_id="a",
        seller_org_name="A",
        credit_amount=Decimal("1"),
        price=Decimal("1"),
        status=TransactionStatus.COMPLETED,
    )
    with pytest.raises(IllegalTransition) as exc_info:
        tx.transition(TransactionStatus.APPROVED)
    assert exc_info.value.to_dict()["current_status"] == "completed"


def test_total_price_rounds_to_cents():
    tx = CreditTransaction(credit_amount=Decimal("3.3333"), price=Decimal("1.50"), status=TransactionStatus.PENDING)
    assert tx.total_price == Decimal("5.00")


def test_expected_errors_are_not_sent_to_sentry():
    event = {"message": "boom"}
    expected = InsufficientBalance("no cash")
    outage = StoreUnavailable("db down")

    assert drop_expected_errors(event, {"exc_info": (type(expected), expected, None)}) is None
    assert drop_expected_errors(event, {"exc_info": (type(outage), outage, None)}) is event
    assert drop_expected_errors(event, {}) is event
