"""Wallet endpoints - open a wallet and read its spendable/locked balances"""

from fastapi import APIRouter, Depends

from spendguard.api.dependencies import get_wallet_repository, to_http_error
from spendguard.api.v1.schemas import OpenWalletRequest, WalletResponse
from spendguard.domain.exceptions import DomainException
from spendguard.infrastructure.database.repositories import WalletRepository

router = APIRouter()


def _wallet_response(wallets: WalletRepository, user_id: str) -> WalletResponse:
    return WalletResponse(
        user_id=user_id,
        available_balance=wallets.available_balance(user_id),
        locked_balance=wallets.locked_balance(user_id),
    )


@router.post("/wallets", response_model=WalletResponse, status_code=201)
def open_wallet(request_body: OpenWalletRequest, wallets: WalletRepository = Depends(get_wallet_repository)):
    try:
        wallets.open_wallet(request_body.user_id, request_body.balance)
        return _wallet_response(wallets, request_body.user_id)
    except DomainException as e:
        raise to_http_error(e)


@router.get("/wallets/{user_id}", response_model=WalletResponse)
def get_wallet(user_id: str, wallets: WalletRepository = Depends(get_wallet_repository)):
    try:
        return _wallet_response(wallets, user_id)
    except DomainException as e:
        raise to_http_error(e)
