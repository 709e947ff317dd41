"""Wallet API Routes"""

from typing import Annotated

from fastapi import APIRouter, Query

from .dependencies import ActorDep, AdminDep, SystemDep, WalletServiceDep
from .schemas import (
    AccountResponse,
    DepositRequest,
    TransactionResponse,
    WithdrawalRequest,
)

router = APIRouter(prefix="/api/v1", tags=["wallet"])


@router.post("/accounts", response_model=AccountResponse, status_code=201)
async def register_account(actor: ActorDep, wallet: WalletServiceDep):
    """Register the calling user (idempotent)"""
    return AccountResponse.from_entity(await wallet.register_account(actor.actor_id))


@router.get("/accounts/me", response_model=AccountResponse)
async def get_my_account(actor: ActorDep, wallet: WalletServiceDep):
    return AccountResponse.from_entity(await wallet.get_account(actor.actor_id))


@router.get("/accounts/me/transactions", response_model=list[TransactionResponse])
async def list_my_transactions(
    actor: ActorDep,
    wallet: WalletServiceDep,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
):
    """Most recent ledger history, oldest first"""
    transactions = await wallet.list_transactions(actor.actor_id, limit=limit, offset=offset)
    return [TransactionResponse.from_entity(tx) for tx in transactions]


@router.post("/wallet/deposits", response_model=TransactionResponse)
async def record_deposit(request: DepositRequest, gateway: SystemDep, wallet: WalletServiceDep):
    """Payment gateway callback; replays return the original entry"""
    tx = await wallet.record_deposit(request.user_id, request.amount, request.external_reference)
    return TransactionResponse.from_entity(tx)


@router.post("/wallet/withdrawals", response_model=TransactionResponse)
async def withdraw(request: WithdrawalRequest, actor: ActorDep, wallet: WalletServiceDep):
    tx = await wallet.withdraw(
        actor.actor_id,
        request.amount,
        method=request.method,
        instant=request.instant,
        request_id=request.request_id,
    )
    return TransactionResponse.from_entity(tx)


@router.get("/platform/fees")
async def total_fees(admin: AdminDep, wallet: WalletServiceDep):
    """Platform commission collected so far"""
    return {"total_fees": await wallet.total_fees_collected()}
