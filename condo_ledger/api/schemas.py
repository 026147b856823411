"""Pydantic schemas for the payment API. Money is integer minor units."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from condo_ledger.services.currency import to_minor_units


class ScopeFilterPayload(BaseModel):
    """Optional restriction of a payment to one stream and/or period."""

    stream: str | None = Field(None, description="Obligation stream: dues or utility")
    period: str | None = Field(None, description="Billing period as YYYY-MM")


class PreviewRequest(BaseModel):
    """Request payload for POST /api/payments/preview."""

    account_id: int = Field(..., description="Account (unit) paying")
    amount: int = Field(
        ..., description="Payment amount in minor units; strings are read as major units (\"1,047.36\")"
    )
    payment_date: date = Field(..., description="Date of payment")
    scope: ScopeFilterPayload | None = Field(None, description="Optional scope filter")

    @field_validator("amount", mode="before")
    @classmethod
    def parse_major_unit_string(cls, v):
        """Accept "950.00" style strings alongside integer minor units."""
        if isinstance(v, str):
            return to_minor_units(v)
        return v


class ExpectedVersionsPayload(BaseModel):
    """Version tokens returned by a preview."""

    account_id: int
    account_version: int
    obligation_versions: dict[int, int] = Field(default_factory=dict)


class CommitRequest(PreviewRequest):
    """Request payload for POST /api/payments/commit."""

    idempotency_key: str = Field(..., description="Caller reference key")
    expected_versions: ExpectedVersionsPayload | None = Field(
        None, description="Versions from a preview; commit fails with 409 if they changed"
    )


class AllocationResponse(BaseModel):
    """One line item of a distribution."""

    obligation_id: int
    stream: str
    period: str
    tier: int
    base_owed_before: int
    penalty_owed_before: int
    base_amount: int
    penalty_amount: int
    total: int
    resulting_status: str


class ObligationResponse(BaseModel):
    """Obligation state (after a previewed payment, or as of a date)."""

    obligation_id: int
    stream: str
    period: str
    due_date: date
    base_amount: int
    penalty_amount: int
    base_paid: int
    penalty_paid: int
    owed: int
    status: str


class PreviewResponse(BaseModel):
    """Response schema for a preview."""

    account_id: int
    allocations: list[AllocationResponse]
    net_credit_delta: int
    overpayment_amount: int
    credit_used: int
    total_applied: int
    credit_before: int
    new_credit_balance: int
    obligations_after: list[ObligationResponse]
    expected_versions: ExpectedVersionsPayload


class CommitResponse(BaseModel):
    """Response schema for a commit."""

    transaction_id: int
    allocations: list[AllocationResponse]
    net_credit_delta: int
    resulting_credit_balance: int
    replayed: bool = False


class ReverseResponse(BaseModel):
    """Response schema for a reversal."""

    transaction_id: int
    restored_credit_balance: int


class AccountSummaryResponse(BaseModel):
    """Open obligations and credit of an account as of a date."""

    account_id: int
    as_of: date
    credit_balance: int
    total_owed: int
    obligations: list[ObligationResponse]


class CreditEntryResponse(BaseModel):
    """One credit balance change."""

    id: int
    transaction_id: int
    source: str
    amount: int
    balance_after: int
    note: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionResponse(BaseModel):
    """Committed payment summary."""

    id: int
    idempotency_key: str
    amount: int
    payment_date: date
    net_credit_delta: int
    resulting_credit_balance: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
