"""
Credit marketplace routes.

Employers list and claim credits; the bank approves, rejects, arranges
direct transfers and settles. Ledger errors are rendered by the handler
registered in main.
"""
from decimal import Decimal
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from carbonex.config import settings
from carbonex.database import get_db
from carbonex.dependencies.auth import require_bank, require_bank_or_employer, require_employer
from carbonex.errors import NotFound
from carbonex.models.credit import CreditTransaction, TransactionStatus
from carbonex.models.organisation import CREDIT_LIMIT, MONEY_LIMIT
from carbonex.models.user import User, UserRole
from carbonex.services.marketplace_service import MarketplaceService
from carbonex.worker import enqueue_settlement


router = APIRouter(prefix="/api/marketplace", tags=["marketplace"])


class CreateListingRequest(BaseModel):
    """Request model for listing credits for sale."""
    credit_amount: Decimal = Field(gt=0, lt=CREDIT_LIMIT)
    price: Decimal = Field(gt=0, lt=MONEY_LIMIT, description="Price per credit")


class CreateTransferRequest(CreateListingRequest):
    """Request model for a bank-arranged transfer."""
    seller_org_id: str
    buyer_org_id: str


class TransactionResponse(BaseModel):
    """Response model for a credit transaction."""
    id: str
    seller_org_id: str
    seller_org_name: str
    buyer_org_id: str | None = None
    buyer_org_name: str | None = None
    credit_amount: Decimal
    price: Decimal
    total_price: Decimal
    status: str
    created_at: str | None = None
    updated_at: str | None = None
    completed_at: str | None = None


def transaction_to_response(tx: CreditTransaction) -> TransactionResponse:
    """Convert CreditTransaction model to TransactionResponse."""
    return TransactionResponse(
        id=tx.id,
        seller_org_id=tx.seller_org_id,
        seller_org_name=tx.seller_org_name,
        buyer_org_id=tx.buyer_org_id,
        buyer_org_name=tx.buyer_org_name,
        credit_amount=tx.credit_amount,
        price=tx.price,
        total_price=tx.total_price,
        status=tx.status.value if isinstance(tx.status, TransactionStatus) else tx.status,
        created_at=tx.created_at.isoformat() if tx.created_at else None,
        updated_at=tx.updated_at.isoformat() if tx.updated_at else None,
        completed_at=tx.completed_at.isoformat() if tx.completed_at else None,
    )


@router.post("/listings", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_listing(
    request: CreateListingRequest,
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    """List credits for sale; they are reserved until the listing ends."""
    tx = await MarketplaceService(db).create_listing(
        employer.organisation_id,
        request.credit_amount,
        request.price,
    )
    return transaction_to_response(tx)


@router.get("/listings", response_model=list[TransactionResponse])
async def list_available(
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    """Approved listings from other organisations that nobody has claimed."""
    txs = await MarketplaceService(db).list_available(exclude_org_id=employer.organisation_id)
    return [transaction_to_response(tx) for tx in txs]


@router.get("/history", response_model=list[TransactionResponse])
async def transaction_history(
    limit: int = 50,
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    """The caller's organisation's sales and purchases, most recent first."""
    txs = await MarketplaceService(db).history(employer.organisation_id, limit=min(limit, 200))
    return [transaction_to_response(tx) for tx in txs]


@router.get("/transactions", response_model=list[TransactionResponse])
async def list_transactions(
    status_filter: TransactionStatus = TransactionStatus.PENDING,
    bank: User = Depends(require_bank),
    db: AsyncSession = Depends(get_db)
):
    """Bank queue: transactions in one status (pending by default)."""
    txs = await MarketplaceService(db).list_by_status(status_filter)
    return [transaction_to_response(tx) for tx in txs]


@router.get("/transactions/{tx_id}", response_model=TransactionResponse)
async def get_transaction(
    tx_id: str,
    user: User = Depends(require_bank_or_employer),
    db: AsyncSession = Depends(get_db)
):
    tx = await MarketplaceService(db).require(tx_id)
    if user.role != UserRole.BANK and tx.status != TransactionStatus.APPROVED and user.organisation_id not in (
        tx.seller_org_id,
        tx.buyer_org_id,
    ):
        raise NotFound(f"Transaction {tx_id} not found", transaction_id=tx_id)
    return transaction_to_response(tx)


@router.post("/transfers", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transfer(
    request: CreateTransferRequest,
    bank: User = Depends(require_bank),
    db: AsyncSession = Depends(get_db)
):
    """Arrange a direct transfer between two organisations; settles on approval."""
    tx = await MarketplaceService(db).create_transfer(
        request.seller_org_id,
        request.buyer_org_id,
        request.credit_amount,
        request.price,
    )
    return transaction_to_response(tx)


@router.post("/transactions/{tx_id}/approve", response_model=TransactionResponse)
async def approve_transaction(
    tx_id: str,
    bank: User = Depends(require_bank),
    db: AsyncSession = Depends(get_db)
):
    tx = await MarketplaceService(db).approve(tx_id)
    return transaction_to_response(tx)


@router.post("/transactions/{tx_id}/reject", response_model=TransactionResponse)
async def reject_transaction(
    tx_id: str,
    bank: User = Depends(require_bank),
    db: AsyncSession = Depends(get_db)
):
    tx = await MarketplaceService(db).reject(tx_id)
    return transaction_to_response(tx)


@router.post("/transactions/{tx_id}/claim", response_model=TransactionResponse)
async def claim_listing(
    tx_id: str,
    employer: User = Depends(require_employer),
    db: AsyncSession = Depends(get_db)
):
    """Claim an approved listing for the caller's organisation."""
    tx = await MarketplaceService(db).claim(tx_id, employer.organisation_id)

    if settings.AUTO_SETTLE_ON_CLAIM:
        await enqueue_settlement(tx.id)

    return transaction_to_response(tx)


@router.post("/transactions/{tx_id}/cancel", response_model=TransactionResponse)
async def cancel_claim(
    tx_id: str,
    user: User = Depends(require_bank_or_employer),
    db: AsyncSession = Depends(get_db)
):
    """Withdraw a claim; employers may only cancel their own."""
    buyer_org_id = None if user.role == UserRole.BANK else user.organisation_id
    tx = await MarketplaceService(db).cancel(tx_id, buyer_org_id=buyer_org_id)
    return transaction_to_response(tx)


@router.post("/transactions/{tx_id}/settle", response_model=TransactionResponse)
async def settle_transaction(
    tx_id: str,
    bank: User = Depends(require_bank),
    db: AsyncSession = Depends(get_db)
):
    tx = await MarketplaceService(db).settle(tx_id)
    return transaction_to_response(tx)
