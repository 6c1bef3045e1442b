"""
Credit marketplace service.

Listing, claim, approval and settlement of credit transactions between
organisations. Credits are reserved (removed from the seller's tradable
balance) when a transaction is created and only move again when it is
settled (to the buyer) or rejected (back to the seller).

Each operation stages all of its balance and status changes on the session
and commits once; Organisation and CreditTransaction rows are versioned, so
a concurrent writer turns the commit into a ConcurrencyConflict instead of
a lost update.
"""
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from carbonex.errors import IllegalTransition, InsufficientBalance, NotFound, ValidationError
from carbonex.logging_config import get_logger
from carbonex.models.base import utcnow
from carbonex.models.credit import CreditTransaction, TransactionStatus
from carbonex.models.organisation import (
    CREDIT_LIMIT,
    CREDIT_QUANTUM,
    MONEY_LIMIT,
    MONEY_QUANTUM,
    Organisation,
)
from carbonex.routes.metrics import (
    track_credits_transferred,
    track_listing_created,
    track_settlement_failed,
    track_transition,
    update_balances,
)
from carbonex.services.organisation_service import positive_amount
from carbonex.services.unit_of_work import commit


class MarketplaceService:
    """Service for the credit transaction state machine."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.log = get_logger(service="marketplace")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get(self, tx_id: str) -> CreditTransaction | None:
        stmt = select(CreditTransaction).where(CreditTransaction.id == tx_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def require(self, tx_id: str) -> CreditTransaction:
        tx = await self.get(tx_id)
        if tx is None:
            raise NotFound(f"Transaction {tx_id} not found", transaction_id=tx_id)
        return tx

    async def _organisation(self, org_id: str, role: str) -> Organisation:
        result = await self.db.execute(select(Organisation).where(Organisation.id == org_id))
        org = result.scalar_one_or_none()
        if org is None or not org.approved:
            raise NotFound(f"{role.capitalize()} organisation {org_id} not found", organisation_id=org_id)
        return org

    async def list_available(self, exclude_org_id: str | None = None) -> list[CreditTransaction]:
        """Approved, unclaimed listings, optionally hiding an organisation's own."""
        stmt = select(CreditTransaction).where(
            CreditTransaction.status == TransactionStatus.APPROVED,
            CreditTransaction.buyer_org_id.is_(None),
        ).order_by(CreditTransaction.price, CreditTransaction.created_at)
        if exclude_org_id is not None:
            stmt = stmt.where(CreditTransaction.seller_org_id != exclude_org_id)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_by_status(self, *statuses: TransactionStatus) -> list[CreditTransaction]:
        """Transactions awaiting a bank decision (pending) or settlement."""
        stmt = select(CreditTransaction).where(
            CreditTransaction.status.in_(statuses or (TransactionStatus.PENDING,))
        ).order_by(CreditTransaction.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def history(self, org_id: str, limit: int = 50) -> list[CreditTransaction]:
        """
        Transactions where the organisation is seller or buyer.

        Args:
            org_id: Organisation UUID
            limit: Maximum number of transactions to return

        Returns:
            List of transactions (most recent first)
        """
        stmt = (
            select(CreditTransaction)
            .where(or_(
                CreditTransaction.seller_org_id == org_id,
                CreditTransaction.buyer_org_id == org_id,
            ))
            .order_by(CreditTransaction.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Creation (reserves credits)
    # ------------------------------------------------------------------

    async def create_listing(self, seller_org_id: str, credit_amount, price) -> CreditTransaction:
        """
        List credits for sale (employer action).

        Reserves credit_amount from the seller's tradable balance and
        inserts a pending transaction with no buyer.

        Raises:
            ValidationError: non-positive amount or price
            InsufficientBalance: amount exceeds the seller's tradable credits
            NotFound: unknown seller organisation
        """
        return await self._create(seller_org_id, None, credit_amount, price)

    async def create_transfer(self, seller_org_id: str, buyer_org_id: str, credit_amount, price) -> CreditTransaction:
        """
        Arrange a direct transfer with the buyer bound up front (bank action).

        Reserves like a listing; approving it settles immediately.
        """
        if seller_org_id == buyer_org_id:
            raise ValidationError("Seller and buyer must be different organisations", organisation_id=seller_org_id)
        return await self._create(seller_org_id, buyer_org_id, credit_amount, price)

    async def _create(self, seller_org_id: str, buyer_org_id: str | None, credit_amount, price) -> CreditTransaction:
        amount = positive_amount(credit_amount, "credit_amount", CREDIT_QUANTUM, CREDIT_LIMIT)
        unit_price = positive_amount(price, "price", MONEY_QUANTUM, MONEY_LIMIT)

        seller = await self._organisation(seller_org_id, "seller")
        buyer = await self._organisation(buyer_org_id, "buyer") if buyer_org_id else None

        if amount > seller.tradable_credits:
            raise InsufficientBalance(
                f"Only {seller.tradable_credits} credits available to sell",
                available=str(seller.tradable_credits),
                requested=str(amount),
            )

        seller.tradable_credits = seller.tradable_credits - amount
        tx = CreditTransaction(
            seller_org_id=seller.id,
            seller_org_name=seller.name,
            buyer_org_id=buyer.id if buyer else None,
            buyer_org_name=buyer.name if buyer else None,
            credit_amount=amount,
            price=unit_price,
            status=TransactionStatus.PENDING,
        )
        self.db.add(tx)
        await commit(self.db)

        kind = "transfer" if buyer else "listing"
        self.log.info(
            "listing_created",
            kind=kind,
            transaction_id=tx.id,
            seller_org_id=seller.id,
            buyer_org_id=tx.buyer_org_id,
            credit_amount=str(amount),
            price=str(unit_price),
            seller_tradable=str(seller.tradable_credits),
        )
        track_listing_created(kind, amount)
        update_balances(seller.id, seller.tradable_credits, seller.cash_balance)
        return tx

    # ------------------------------------------------------------------
    # Bank decisions
    # ------------------------------------------------------------------

    async def approve(self, tx_id: str) -> CreditTransaction:
        """
        Approve a pending transaction (bank action).

        A public listing becomes available to buyers. A transfer with its
        buyer already bound is settled on the spot (pending -> completed).
        """
        tx = await self.require(tx_id)
        if tx.buyer_org_id is None:
            tx.transition(TransactionStatus.APPROVED)
            await commit(self.db)
            self.log.info("listing_approved", transaction_id=tx.id, seller_org_id=tx.seller_org_id)
            track_transition(tx.status.value)
            return tx

        if tx.status != TransactionStatus.PENDING:
            raise IllegalTransition(
                f"Cannot approve transaction in status {tx.status.value}",
                current_status=tx.status.value,
                transaction_id=tx.id,
            )
        seller = await self._organisation(tx.seller_org_id, "seller")
        buyer = await self._organisation(tx.buyer_org_id, "buyer")
        self._ensure_cash(tx, buyer)
        self._transfer(tx, seller, buyer)
        await commit(self.db)

        self._after_settlement(tx, seller, buyer)
        return tx

    async def reject(self, tx_id: str) -> CreditTransaction:
        """Reject a pending transaction and release the seller's reservation."""
        tx = await self.require(tx_id)
        tx.transition(TransactionStatus.REJECTED)

        seller = await self._seller_for_release(tx)
        if seller is not None:
            seller.tradable_credits = seller.tradable_credits + tx.credit_amount
        await commit(self.db)

        self.log.info(
            "listing_rejected",
            transaction_id=tx.id,
            seller_org_id=tx.seller_org_id,
            released=str(tx.credit_amount),
        )
        track_transition(tx.status.value)
        if seller is not None:
            update_balances(seller.id, seller.tradable_credits, seller.cash_balance)
        return tx

    async def _seller_for_release(self, tx: CreditTransaction) -> Organisation | None:
        result = await self.db.execute(select(Organisation).where(Organisation.id == tx.seller_org_id))
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Buyer flow
    # ------------------------------------------------------------------

    async def claim(self, tx_id: str, buyer_org_id: str) -> CreditTransaction:
        """
        Bind a buyer to an approved listing (employer action).

        Nothing moves yet; the buyer has only expressed intent.

        Raises:
            IllegalTransition: listing not approved or already claimed
            ValidationError: buyer is the seller
        """
        tx = await self.require(tx_id)
        if tx.status != TransactionStatus.APPROVED or tx.buyer_org_id is not None:
            raise IllegalTransition(
                f"Listing is not available (status {tx.status.value})",
                current_status=tx.status.value,
                transaction_id=tx.id,
            )
        if buyer_org_id == tx.seller_org_id:
            raise ValidationError("Organisations cannot buy their own listing", organisation_id=buyer_org_id)

        buyer = await self._organisation(buyer_org_id, "buyer")
        tx.transition(TransactionStatus.PENDING_PURCHASE)
        tx.buyer_org_id = buyer.id
        tx.buyer_org_name = buyer.name
        await commit(self.db)

        self.log.info("listing_claimed", transaction_id=tx.id, buyer_org_id=buyer.id)
        track_transition(tx.status.value)
        return tx

    async def cancel(self, tx_id: str, buyer_org_id: str | None = None) -> CreditTransaction:
        """
        Withdraw a claim: pending_purchase -> approved with the buyer cleared.

        When buyer_org_id is given only that buyer may cancel. The seller's
        reservation stays in place since the listing is live again.
        """
        tx = await self.require(tx_id)
        if buyer_org_id is not None and tx.buyer_org_id != buyer_org_id:
            raise NotFound(f"Transaction {tx_id} not found", transaction_id=tx_id)

        self._release_claim(tx)
        await commit(self.db)

        self.log.info("claim_cancelled", transaction_id=tx.id)
        track_transition(tx.status.value)
        return tx

    def _release_claim(self, tx: CreditTransaction) -> None:
        tx.transition(TransactionStatus.APPROVED)
        tx.buyer_org_id = None
        tx.buyer_org_name = None

    async def settle(self, tx_id: str) -> CreditTransaction:
        """
        Finalise a claimed listing (bank action or automated finalizer).

        Moves credit_amount * price from buyer to seller cash and credits to
        the buyer. Settling a completed transaction is a no-op. When the
        buyer cannot pay, the claim is cancelled (listing live again, seller
        reservation kept) and InsufficientBalance is raised.
        """
        tx = await self.require(tx_id)
        if tx.status == TransactionStatus.COMPLETED:
            self.log.info("settlement_already_completed", transaction_id=tx.id)
            return tx
        if tx.status != TransactionStatus.PENDING_PURCHASE:
            raise IllegalTransition(
                f"Cannot settle transaction in status {tx.status.value}",
                current_status=tx.status.value,
                transaction_id=tx.id,
            )

        seller = await self._organisation(tx.seller_org_id, "seller")
        buyer = await self._organisation(tx.buyer_org_id, "buyer")

        try:
            self._ensure_cash(tx, buyer)
        except InsufficientBalance:
            self._release_claim(tx)
            await commit(self.db)
            self.log.warning(
                "settlement_failed",
                transaction_id=tx.id,
                buyer_org_id=buyer.id,
                reason="insufficient_cash",
            )
            track_settlement_failed("insufficient_cash")
            raise

        self._transfer(tx, seller, buyer)
        await commit(self.db)

        self._after_settlement(tx, seller, buyer)
        return tx

    # ------------------------------------------------------------------
    # Settlement primitives
    # ------------------------------------------------------------------

    def _ensure_cash(self, tx: CreditTransaction, buyer: Organisation) -> None:
        if buyer.cash_balance < tx.total_price:
            raise InsufficientBalance(
                f"Buyer has {buyer.cash_balance} but {tx.total_price} is required",
                available=str(buyer.cash_balance),
                required=str(tx.total_price),
                transaction_id=tx.id,
            )

    def _transfer(self, tx: CreditTransaction, seller: Organisation, buyer: Organisation) -> None:
        """Stage the cash and credit movement; the seller side was reserved at creation."""
        total = tx.total_price
        tx.transition(TransactionStatus.COMPLETED)
        tx.completed_at = utcnow()
        buyer.cash_balance = buyer.cash_balance - total
        seller.cash_balance = seller.cash_balance + total
        buyer.tradable_credits = buyer.tradable_credits + tx.credit_amount

    def _after_settlement(self, tx: CreditTransaction, seller: Organisation, buyer: Organisation) -> None:
        self.log.info(
            "settlement_completed",
            transaction_id=tx.id,
            seller_org_id=seller.id,
            buyer_org_id=buyer.id,
            credit_amount=str(tx.credit_amount),
            total_price=str(tx.total_price),
        )
        track_transition(tx.status.value)
        track_credits_transferred(tx.credit_amount)
        update_balances(seller.id, seller.tradable_credits, seller.cash_balance)
        update_balances(buyer.id, buyer.tradable_credits, buyer.cash_balance)
