from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from hc_registry.authentication.services import get_current_user
from hc_registry.core.database.abstract_store import AbstractRegistryStore
from hc_registry.core.database.db import get_store
from hc_registry.core.models.base import CreditStatus
from hc_registry.core.pagination import CreditPagination, PageParams, page_params, pagination_fields
from hc_registry.credit import services
from hc_registry.credit.schemas import (
    CreditOperationResponse,
    CreditPageResponse,
    CreditRead,
    CreditResponse,
    CreditStatisticsResponse,
    IssueCreditRequest,
    RetireCreditRequest,
    TransferCreditRequest,
)
from hc_registry.ledger.client import LedgerClient
from hc_registry.ledger.services import get_ledger_client
from hc_registry.settings import settings
from hc_registry.user.models import User

router = APIRouter(tags=["Credits"])

LoggedInUser = Annotated[User, Depends(get_current_user)]


def _page_response(credits, total: int, params: PageParams) -> CreditPageResponse:
    return CreditPageResponse(
        credits=[CreditRead.model_validate(c) for c in credits],
        pagination=CreditPagination(
            **pagination_fields(params, total), total_credits=total
        ),
    )


@router.post(
    "/issue",
    response_model=CreditOperationResponse,
    status_code=status.HTTP_201_CREATED,
)
def issue_credit(
    issue_request: IssueCreditRequest,
    current_user: LoggedInUser,
    store: AbstractRegistryStore = Depends(get_store),
    ledger_client: LedgerClient = Depends(get_ledger_client),
):
    """Issue a hydrogen credit to a producer. Certifiers only.

    The credit is minted on the ledger first; the registry record is written
    once the transaction is confirmed. A ledger timeout returns 504 and leaves
    a ledger intent for reconciliation.
    """
    credit, receipt = services.issue_credit(
        current_user, issue_request, store, ledger_client
    )
    return CreditOperationResponse(
        message="Credit issued successfully",
        credit=CreditRead.model_validate(credit),
        transaction_hash=receipt.transaction_hash,
        block_number=receipt.block_number,
    )


@router.post("/transfer", response_model=CreditOperationResponse)
def transfer_credit(
    transfer_request: TransferCreditRequest,
    current_user: LoggedInUser,
    store: AbstractRegistryStore = Depends(get_store),
    ledger_client: LedgerClient = Depends(get_ledger_client),
):
    """Transfer units of a credit the caller currently owns to another user."""
    credit, receipt = services.transfer_credit(
        current_user, transfer_request, store, ledger_client
    )
    return CreditOperationResponse(
        message="Credit transferred successfully",
        credit=CreditRead.model_validate(credit),
        transaction_hash=receipt.transaction_hash,
        block_number=receipt.block_number,
    )


@router.post("/retire", response_model=CreditOperationResponse)
def retire_credit(
    retire_request: RetireCreditRequest,
    current_user: LoggedInUser,
    store: AbstractRegistryStore = Depends(get_store),
    ledger_client: LedgerClient = Depends(get_ledger_client),
):
    """Retire a credit the caller owns. Consumers only; retirement is final."""
    credit, receipt = services.retire_credit(
        current_user, retire_request, store, ledger_client
    )
    return CreditOperationResponse(
        message="Credit retired successfully",
        credit=CreditRead.model_validate(credit),
        transaction_hash=receipt.transaction_hash,
        block_number=receipt.block_number,
    )


@router.get("/my-credits", response_model=CreditPageResponse)
def read_my_credits(
    current_user: LoggedInUser,
    credit_status: CreditStatus | None = Query(None, alias="status"),
    params: PageParams = Depends(page_params(settings.DEFAULT_PAGE_LIMIT)),
    store: AbstractRegistryStore = Depends(get_store),
):
    credits, total = services.list_owned_credits(
        current_user, params, store, status=credit_status
    )
    return _page_response(credits, total, params)


@router.get("/produced-credits", response_model=CreditPageResponse)
def read_produced_credits(
    current_user: LoggedInUser,
    params: PageParams = Depends(page_params(settings.DEFAULT_PAGE_LIMIT)),
    store: AbstractRegistryStore = Depends(get_store),
):
    credits, total = services.list_produced_credits(current_user, params, store)
    return _page_response(credits, total, params)


@router.get("/statistics", response_model=CreditStatisticsResponse)
def read_credit_statistics(
    current_user: LoggedInUser,
    store: AbstractRegistryStore = Depends(get_store),
):
    return services.get_credit_statistics(store)


@router.get("/{credit_id}", response_model=CreditResponse)
def read_credit(
    credit_id: int,
    current_user: LoggedInUser,
    store: AbstractRegistryStore = Depends(get_store),
):
    credit = services.get_credit(credit_id, store)
    return CreditResponse(credit=CreditRead.model_validate(credit))
