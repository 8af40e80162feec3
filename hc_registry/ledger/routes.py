from typing import Annotated

from fastapi import APIRouter, Depends, Query

from hc_registry.authentication.services import get_current_user
from hc_registry.core.exceptions import ValidationError
from hc_registry.core.models.base import LedgerEventName, UserRoles
from hc_registry.credit import services as credit_services
from hc_registry.ledger.client import HolderType, LedgerClient, is_valid_address
from hc_registry.ledger.schemas import (
    LedgerBalanceResponse,
    LedgerCreditMetadata,
    LedgerEventsResponse,
    LedgerNetworkInfo,
    LedgerRoleResponse,
    LedgerTotalCreditsResponse,
    LedgerTransactionStatus,
    LedgerUserCreditsResponse,
    LedgerVerifyRequest,
    LedgerVerifyResponse,
)
from hc_registry.ledger.services import get_ledger_client
from hc_registry.user.models import User

router = APIRouter(tags=["Blockchain"])

LoggedInUser = Annotated[User, Depends(get_current_user)]
Ledger = Annotated[LedgerClient, Depends(get_ledger_client)]


def _checked_address(address: str) -> str:
    if not is_valid_address(address):
        raise ValidationError(
            details=[{"field": "address", "message": "Invalid wallet address"}]
        )
    return address.lower()


@router.get("/network", response_model=LedgerNetworkInfo)
def read_network_info(current_user: LoggedInUser, ledger_client: Ledger):
    return ledger_client.get_network_info()


@router.get("/transaction/{tx_hash}", response_model=LedgerTransactionStatus)
def read_transaction_status(
    tx_hash: str, current_user: LoggedInUser, ledger_client: Ledger
):
    """Status of a ledger transaction: pending, success or failed."""
    return ledger_client.get_transaction_status(tx_hash)


@router.get("/credit/{credit_id}", response_model=LedgerCreditMetadata)
def read_ledger_credit(
    credit_id: int, current_user: LoggedInUser, ledger_client: Ledger
):
    """Credit metadata as stored on the ledger, independent of the registry record."""
    return ledger_client.get_credit_metadata(credit_id)


@router.post("/verify", response_model=LedgerVerifyResponse)
def verify_credit(
    verify_request: LedgerVerifyRequest,
    current_user: LoggedInUser,
    ledger_client: Ledger,
):
    verified = credit_services.verify_credit(
        verify_request.credit_id, verify_request.metadata_hash, ledger_client
    )
    return LedgerVerifyResponse(
        verified=verified,
        credit_id=verify_request.credit_id,
        metadata_hash=verify_request.metadata_hash,
    )


@router.get("/balance/{address}/{credit_id}", response_model=LedgerBalanceResponse)
def read_balance(
    address: str, credit_id: int, current_user: LoggedInUser, ledger_client: Ledger
):
    address = _checked_address(address)
    return LedgerBalanceResponse(
        user_address=address,
        credit_id=credit_id,
        balance=ledger_client.get_balance(address, credit_id),
    )


@router.get("/total-credits", response_model=LedgerTotalCreditsResponse)
def read_total_credits(current_user: LoggedInUser, ledger_client: Ledger):
    return LedgerTotalCreditsResponse(total_credits=ledger_client.get_total_issued())


@router.get("/user-credits/{address}", response_model=LedgerUserCreditsResponse)
def read_user_credits(
    address: str,
    current_user: LoggedInUser,
    ledger_client: Ledger,
    holder_type: HolderType = Query("producer", alias="type"),
):
    """Credit ids a wallet produced (``type=producer``) or received (``type=consumer``)."""
    address = _checked_address(address)
    return LedgerUserCreditsResponse(
        user_address=address,
        type=holder_type,
        credit_ids=ledger_client.get_user_credits(address, holder_type),
    )


@router.get("/role/{address}/{role}", response_model=LedgerRoleResponse)
def read_role(
    address: str, role: UserRoles, current_user: LoggedInUser, ledger_client: Ledger
):
    address = _checked_address(address)
    return LedgerRoleResponse(
        user_address=address,
        role=role,
        has_role=ledger_client.has_role(address, role),
    )


@router.get("/events", response_model=LedgerEventsResponse)
def read_events(
    current_user: LoggedInUser,
    ledger_client: Ledger,
    event_name: LedgerEventName = Query(alias="eventName"),
    from_block: int = Query(0, ge=0, alias="fromBlock"),
    to_block: int | None = Query(None, ge=0, alias="toBlock"),
):
    return LedgerEventsResponse(
        event_name=event_name,
        from_block=from_block,
        to_block=to_block,
        events=ledger_client.query_events(event_name, from_block, to_block),
    )
