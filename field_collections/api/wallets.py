"""
Wallet endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Query, status

from .deps import ActorDep, SystemDep, authorize, parse_enum, resolve_now
from .schemas import (
    CreateWalletRequest, TransferRequest, WalletMovementRequest,
    transaction_response, wallet_response
)
from ..currency import Currency
from ..permissions import Action, Actor
from ..system import CollectionsSystem
from ..wallets import TransactionType


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_wallet(
    request: CreateWalletRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Create (or return) the owner's wallet in a currency"""
    authorize(system, actor, Action.DEPOSIT, owner_id=request.owner_id)
    currency = Currency.from_code(request.currency) if request.currency else system.currency
    wallet = system.wallet_ledger.get_or_create_wallet(
        request.owner_id, currency, resolve_now(request.occurred_at)
    )
    return wallet_response(wallet)


@router.post("/transfers", status_code=status.HTTP_201_CREATED)
async def transfer(
    request: TransferRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Move money between two wallets atomically"""
    source = system.wallet_ledger.require_wallet(request.from_wallet_id)
    authorize(system, actor, Action.TRANSFER, owner_id=source.owner_id)
    result = system.wallet_ledger.transfer(
        request.from_wallet_id, request.to_wallet_id, request.amount,
        resolve_now(request.occurred_at), description=request.description
    )
    return {
        "transfer_id": result.transfer_id,
        "debit": transaction_response(result.debit),
        "credit": transaction_response(result.credit)
    }


@router.get("/owners/{owner_id}")
async def get_owner_wallets(
    owner_id: str,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    authorize(system, actor, Action.VIEW_WALLET, owner_id=owner_id)
    return {"wallets": [wallet_response(w) for w in system.wallet_ledger.get_owner_wallets(owner_id)]}


@router.get("/{wallet_id}")
async def get_wallet(
    wallet_id: str,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    wallet = system.wallet_ledger.require_wallet(wallet_id)
    authorize(system, actor, Action.VIEW_WALLET, owner_id=wallet.owner_id)
    return wallet_response(wallet)


@router.get("/{wallet_id}/transactions")
async def get_transactions(
    wallet_id: str,
    type: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Paginated wallet history, newest first"""
    wallet = system.wallet_ledger.require_wallet(wallet_id)
    authorize(system, actor, Action.VIEW_WALLET, owner_id=wallet.owner_id)

    result = system.wallet_ledger.get_transactions(
        wallet_id,
        transaction_type=parse_enum(TransactionType, type, "type") if type else None,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit
    )
    return {
        "transactions": [transaction_response(t) for t in result.items],
        "total": result.total,
        "page": result.page,
        "limit": result.limit,
        "pages": result.pages
    }


@router.post("/{wallet_id}/deposit", status_code=status.HTTP_201_CREATED)
async def deposit(
    wallet_id: str,
    request: WalletMovementRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    wallet = system.wallet_ledger.require_wallet(wallet_id)
    authorize(system, actor, Action.DEPOSIT, owner_id=wallet.owner_id)
    transaction = system.wallet_ledger.deposit(
        wallet_id, request.amount, resolve_now(request.occurred_at), request.description
    )
    return transaction_response(transaction)


@router.post("/{wallet_id}/withdraw", status_code=status.HTTP_201_CREATED)
async def withdraw(
    wallet_id: str,
    request: WalletMovementRequest,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    wallet = system.wallet_ledger.require_wallet(wallet_id)
    authorize(system, actor, Action.WITHDRAW, owner_id=wallet.owner_id)
    transaction = system.wallet_ledger.withdraw(
        wallet_id, request.amount, resolve_now(request.occurred_at), request.description
    )
    return transaction_response(transaction)


@router.get("/{wallet_id}/verify")
async def verify_wallet(
    wallet_id: str,
    system: CollectionsSystem = SystemDep,
    actor: Actor = ActorDep
):
    """Replay the ledger and compare it with the stored balance"""
    wallet = system.wallet_ledger.require_wallet(wallet_id)
    authorize(system, actor, Action.VIEW_WALLET, owner_id=wallet.owner_id)
    result = system.wallet_ledger.verify_wallet(wallet_id)
    return {key: str(value) if not isinstance(value, (bool, int, list)) else value
            for key, value in result.items()}
