"""Payment API endpoints.

Handles the payment engine operations:
- Preview a payment distribution (no side effects)
- Commit a payment (atomic, idempotent per reference key)
- Reverse a committed payment
- Account summary, credit history and transaction listing
"""

import logging
from datetime import date

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from condo_ledger.api.errors import raise_app_error
from condo_ledger.api.schemas import (
    AccountSummaryResponse,
    AllocationResponse,
    CommitRequest,
    CommitResponse,
    CreditEntryResponse,
    ExpectedVersionsPayload,
    ObligationResponse,
    PreviewRequest,
    PreviewResponse,
    ReverseResponse,
    ScopeFilterPayload,
    TransactionResponse,
)
from condo_ledger.services import get_db
from condo_ledger.services.distribution_planner import Allocation, ObligationSnapshot, ScopeFilter
from condo_ledger.services.errors import LedgerError
from condo_ledger.services.obligation_repository import ExpectedVersions
from condo_ledger.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


def _scope(payload: ScopeFilterPayload | None) -> ScopeFilter | None:
    if payload is None:
        return None
    return ScopeFilter.parse(stream=payload.stream, period=payload.period)


def _allocation(allocation: Allocation) -> AllocationResponse:
    return AllocationResponse(**allocation.to_dict())


def _obligation(obligation: ObligationSnapshot) -> ObligationResponse:
    return ObligationResponse(**obligation.to_dict())


@router.post("/preview", response_model=PreviewResponse)
def preview_payment(payload: PreviewRequest, db: Session = Depends(get_db)) -> PreviewResponse:
    """
    Preview how a payment would be distributed.

    Returns:
        200: PreviewResponse (nothing is persisted)
        422: Validation error (non-positive amount, unknown account, bad scope)
    """
    try:
        preview = PaymentService(db).preview(
            account_id=payload.account_id,
            amount=payload.amount,
            payment_date=payload.payment_date,
            scope=_scope(payload.scope),
        )
    except LedgerError as e:
        logger.warning(f"Preview rejected for account {payload.account_id}: {e}")
        raise_app_error(e)

    plan = preview.plan
    versions = preview.expected_versions
    return PreviewResponse(
        account_id=plan.account_id,
        allocations=[_allocation(a) for a in plan.allocations],
        net_credit_delta=plan.net_credit_delta,
        overpayment_amount=plan.overpayment_amount,
        credit_used=plan.credit_used,
        total_applied=plan.total_applied,
        credit_before=plan.credit_before,
        new_credit_balance=plan.new_credit_balance,
        obligations_after=[_obligation(o) for o in plan.obligations_after],
        expected_versions=ExpectedVersionsPayload(
            account_id=versions.account_id,
            account_version=versions.account_version,
            obligation_versions=dict(versions.obligation_versions),
        ),
    )


@router.post("/commit", response_model=CommitResponse, status_code=status.HTTP_201_CREATED)
def commit_payment(payload: CommitRequest, db: Session = Depends(get_db)) -> CommitResponse:
    """
    Distribute and record a payment.

    Returns:
        201: CommitResponse with the transaction ID
        409: Conflict (retryable) if the account changed concurrently
        422: Validation error
    """
    expected = None
    if payload.expected_versions is not None:
        expected = ExpectedVersions(
            account_id=payload.expected_versions.account_id,
            account_version=payload.expected_versions.account_version,
            obligation_versions=dict(payload.expected_versions.obligation_versions),
        )
    try:
        result = PaymentService(db).commit(
            account_id=payload.account_id,
            amount=payload.amount,
            payment_date=payload.payment_date,
            idempotency_key=payload.idempotency_key,
            scope=_scope(payload.scope),
            expected_versions=expected,
        )
    except LedgerError as e:
        logger.warning(f"Commit rejected for account {payload.account_id}: {e}")
        raise_app_error(e)

    return CommitResponse(
        transaction_id=result.transaction_id,
        allocations=[_allocation(a) for a in result.allocations],
        net_credit_delta=result.net_credit_delta,
        resulting_credit_balance=result.resulting_credit_balance,
        replayed=result.replayed,
    )


@router.post("/{transaction_id}/reverse", response_model=ReverseResponse)
def reverse_payment(transaction_id: int, db: Session = Depends(get_db)) -> ReverseResponse:
    """
    Reverse a committed payment.

    Returns:
        200: ReverseResponse with the restored credit balance
        404: Transaction not found
        409: Obligations modified since the commit
    """
    try:
        result = PaymentService(db).reverse(transaction_id)
    except LedgerError as e:
        logger.warning(f"Reversal of payment {transaction_id} rejected: {e}")
        raise_app_error(e)

    return ReverseResponse(
        transaction_id=result.transaction_id,
        restored_credit_balance=result.restored_credit_balance,
    )


@router.get("/accounts/{account_id}/summary", response_model=AccountSummaryResponse)
def account_summary(
    account_id: int, as_of: date | None = None, db: Session = Depends(get_db)
) -> AccountSummaryResponse:
    """Open obligations with penalties as of a date (default: today)."""
    try:
        summary = PaymentService(db).account_summary(account_id, as_of or date.today())
    except LedgerError as e:
        raise_app_error(e)

    return AccountSummaryResponse(
        account_id=summary.account_id,
        as_of=summary.as_of,
        credit_balance=summary.credit_balance,
        total_owed=summary.total_owed,
        obligations=[_obligation(o) for o in summary.obligations],
    )


@router.get("/accounts/{account_id}/credit-history", response_model=list[CreditEntryResponse])
def credit_history(account_id: int, db: Session = Depends(get_db)) -> list[CreditEntryResponse]:
    """Credit balance changes of an account, oldest first."""
    try:
        entries = PaymentService(db).credit_history(account_id)
    except LedgerError as e:
        raise_app_error(e)

    return [
        CreditEntryResponse(
            id=entry.id,
            transaction_id=entry.transaction_id,
            source=entry.source.value,
            amount=entry.amount,
            balance_after=entry.balance_after,
            note=entry.note,
            created_at=entry.created_at,
        )
        for entry in entries
    ]


@router.get("/accounts/{account_id}/transactions", response_model=list[TransactionResponse])
def list_transactions(account_id: int, db: Session = Depends(get_db)) -> list[TransactionResponse]:
    """Committed payments of an account."""
    try:
        records = PaymentService(db).list_transactions(account_id)
    except LedgerError as e:
        raise_app_error(e)

    return [TransactionResponse.model_validate(record) for record in records]
