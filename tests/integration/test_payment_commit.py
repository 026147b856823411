"""Integration tests for previewing and committing payments."""

from dataclasses import replace
from datetime import date

import pytest
from sqlalchemy import select

from condo_ledger.models import (
    AuditLog,
    CreditLedgerEntry,
    CreditSource,
    Obligation,
    ObligationStatus,
    ObligationStream,
    TransactionRecord,
)
from condo_ledger.services.distribution_planner import ScopeFilter
from condo_ledger.services.errors import (
    ConflictError,
    InvariantViolationError,
    UnknownAccountError,
    ValidationError,
)
from condo_ledger.services.payment_recorder import PaymentRecorder
from condo_ledger.services.payment_service import PaymentService

PAYMENT_DATE = date(2025, 11, 5)


@pytest.mark.integration
class TestPreview:
    """Test read-only previews."""

    def test_preview_persists_nothing(self, db_session, account, november_dues):
        service = PaymentService(db_session)

        preview = service.preview(account.id, 95000, PAYMENT_DATE)

        assert preview.allocations[0].base_amount == 95000
        assert preview.net_credit_delta == 0
        db_session.expire_all()
        obligation = db_session.get(Obligation, november_dues.id)
        assert obligation.status is ObligationStatus.UNPAID
        assert obligation.base_paid == 0
        assert db_session.scalars(select(TransactionRecord)).all() == []

    def test_preview_captures_versions(self, db_session, account, november_dues):
        preview = PaymentService(db_session).preview(account.id, 1000, PAYMENT_DATE)

        assert preview.expected_versions.account_id == account.id
        assert preview.expected_versions.account_version == 1
        assert preview.expected_versions.obligation_versions == {november_dues.id: 1}

    def test_preview_collects_imported_penalty(self, db_session, repository, account):
        """A penalty carried over at registration is owed before the base."""
        imported = repository.add_obligation(
            account.id, ObligationStream.DUES, "2025-11", date(2025, 11, 1), 95000, penalty_amount=2000
        )
        db_session.commit()

        preview = PaymentService(db_session).preview(account.id, 97000, PAYMENT_DATE)

        allocation = preview.allocations[0]
        assert allocation.obligation_id == imported.id
        assert allocation.penalty_accrued == 2000
        assert allocation.penalty_amount == 2000
        assert allocation.base_amount == 95000
        assert allocation.resulting_status is ObligationStatus.PAID

    def test_preview_unknown_account(self, db_session):
        with pytest.raises(UnknownAccountError):
            PaymentService(db_session).preview(999, 1000, PAYMENT_DATE)

    def test_preview_rejects_zero_amount(self, db_session, account):
        with pytest.raises(ValidationError):
            PaymentService(db_session).preview(account.id, 0, PAYMENT_DATE)


@pytest.mark.integration
class TestCommit:
    """Test atomic commits."""

    def test_commit_exact_payment(self, db_session, account, november_dues):
        service = PaymentService(db_session)

        result = service.commit(account.id, 95000, PAYMENT_DATE, idempotency_key="OR-0001")

        assert result.replayed is False
        assert result.net_credit_delta == 0
        assert result.resulting_credit_balance == 0

        obligation = db_session.get(Obligation, november_dues.id)
        assert obligation.status is ObligationStatus.PAID
        assert obligation.base_paid == 95000
        assert obligation.version == 2

        record = db_session.get(TransactionRecord, result.transaction_id)
        assert record.idempotency_key == "OR-0001"
        assert record.amount == 95000
        assert [(a.obligation_id, a.base_amount, a.penalty_amount) for a in record.allocations] == [
            (november_dues.id, 95000, 0)
        ]
        assert record.allocations[0].obligation_version_before == 1
        assert record.allocations[0].obligation_version_after == 2

        db_session.refresh(account)
        assert account.version == 2
        assert account.credit_balance == 0

    def test_commit_matches_preview(self, db_session, account, make_obligation):
        make_obligation(account, "2025-09", date(2025, 9, 6), 95000)
        make_obligation(account, "2025-10", date(2025, 10, 20), 18000, stream=ObligationStream.UTILITY)
        make_obligation(account, "2025-12", date(2025, 12, 1), 95000)
        service = PaymentService(db_session)

        preview = service.preview(account.id, 150000, PAYMENT_DATE)
        result = service.commit(
            account.id,
            150000,
            PAYMENT_DATE,
            idempotency_key="OR-0002",
            expected_versions=preview.expected_versions,
        )

        assert result.allocations == preview.allocations
        assert result.net_credit_delta == preview.net_credit_delta

    def test_commit_with_penalty_persists_accrued_penalty(self, db_session, account, make_obligation):
        late = make_obligation(account, "2025-09", date(2025, 9, 6), 95000)

        PaymentService(db_session).commit(account.id, 50000, PAYMENT_DATE, idempotency_key="OR-0003")

        obligation = db_session.get(Obligation, late.id)
        assert obligation.penalty_amount == 9738
        assert obligation.penalty_paid == 9738
        assert obligation.base_paid == 40262
        assert obligation.status is ObligationStatus.PARTIAL

    def test_overpayment_becomes_credit(self, db_session, account, november_dues):
        service = PaymentService(db_session)

        result = service.commit(account.id, 100000, PAYMENT_DATE, idempotency_key="OR-0004")

        assert result.net_credit_delta == 5000
        assert result.resulting_credit_balance == 5000
        entries = service.credit_history(account.id)
        assert [(e.source, e.amount, e.balance_after) for e in entries] == [(CreditSource.PAYMENT, 5000, 5000)]
        assert entries[0].transaction_id == result.transaction_id

    def test_credit_applied_on_next_payment(self, db_session, make_account, make_obligation):
        account = make_account(credit_balance=95000)
        make_obligation(account, "2025-11", date(2025, 11, 1), 190000)

        result = PaymentService(db_session).commit(account.id, 95000, PAYMENT_DATE, idempotency_key="OR-0005")

        assert result.net_credit_delta == -95000
        assert result.resulting_credit_balance == 0
        db_session.refresh(account)
        assert account.credit_balance == 0

    def test_scoped_commit(self, db_session, account, make_obligation):
        make_obligation(account, "2025-10", date(2025, 10, 1), 95000)
        bill = make_obligation(account, "2025-10", date(2025, 10, 20), 18000, stream=ObligationStream.UTILITY)

        result = PaymentService(db_session).commit(
            account.id,
            18000,
            PAYMENT_DATE,
            idempotency_key="OR-0006",
            scope=ScopeFilter(stream=ObligationStream.UTILITY),
        )

        assert [a.obligation_id for a in result.allocations] == [bill.id]
        record = db_session.get(TransactionRecord, result.transaction_id)
        assert record.scope_stream is ObligationStream.UTILITY

    def test_commit_writes_audit_log(self, db_session, account, november_dues):
        result = PaymentService(db_session).commit(account.id, 95000, PAYMENT_DATE, idempotency_key="OR-0007")

        logs = db_session.scalars(select(AuditLog)).all()
        assert len(logs) == 1
        assert logs[0].entity_type == "payment_transaction"
        assert logs[0].entity_id == result.transaction_id
        assert logs[0].action == "commit"
        assert logs[0].changes["obligation_ids"] == [november_dues.id]

    def test_list_transactions(self, db_session, account, november_dues):
        service = PaymentService(db_session)
        service.commit(account.id, 50000, date(2025, 11, 6), idempotency_key="OR-B")
        service.commit(account.id, 45000, PAYMENT_DATE, idempotency_key="OR-A")

        records = service.list_transactions(account.id)

        assert [r.idempotency_key for r in records] == ["OR-A", "OR-B"]

    def test_list_transactions_unknown_account(self, db_session):
        with pytest.raises(UnknownAccountError):
            PaymentService(db_session).list_transactions(404)


@pytest.mark.integration
class TestIdempotency:
    """Test repeated commits with the same reference key."""

    def test_same_key_same_payload_replays(self, db_session, account, november_dues):
        service = PaymentService(db_session)
        first = service.commit(account.id, 100000, PAYMENT_DATE, idempotency_key="OR-0100")

        second = service.commit(account.id, 100000, PAYMENT_DATE, idempotency_key="OR-0100")

        assert second.replayed is True
        assert second.transaction_id == first.transaction_id
        assert second.allocations == first.allocations
        assert second.resulting_credit_balance == 5000
        db_session.refresh(account)
        assert account.credit_balance == 5000
        assert len(db_session.scalars(select(TransactionRecord)).all()) == 1

    def test_same_key_different_payload_rejected(self, db_session, account, november_dues):
        service = PaymentService(db_session)
        service.commit(account.id, 95000, PAYMENT_DATE, idempotency_key="OR-0101")

        with pytest.raises(ValidationError, match="already used"):
            service.commit(account.id, 90000, PAYMENT_DATE, idempotency_key="OR-0101")

    @pytest.mark.parametrize("key", ["", "   ", None, "x" * 101])
    def test_invalid_key_rejected(self, db_session, account, key):
        with pytest.raises(ValidationError):
            PaymentService(db_session).commit(account.id, 1000, PAYMENT_DATE, idempotency_key=key)


@pytest.mark.integration
class TestConcurrencyChecks:
    """Test optimistic version checks."""

    def test_stale_preview_rejected(self, db_session, account, november_dues):
        service = PaymentService(db_session)
        preview = service.preview(account.id, 50000, PAYMENT_DATE)
        service.commit(account.id, 20000, PAYMENT_DATE, idempotency_key="OR-0200")

        with pytest.raises(ConflictError) as exc_info:
            service.commit(
                account.id,
                50000,
                PAYMENT_DATE,
                idempotency_key="OR-0201",
                expected_versions=preview.expected_versions,
            )

        assert exc_info.value.retryable is True
        obligation = db_session.get(Obligation, november_dues.id)
        assert obligation.base_paid == 20000

    def test_recorder_rejects_stale_plan(self, db_session, account, november_dues):
        service = PaymentService(db_session)
        stale = service.preview(account.id, 50000, PAYMENT_DATE)
        service.commit(account.id, 20000, PAYMENT_DATE, idempotency_key="OR-0202")

        with pytest.raises(ConflictError) as exc_info:
            PaymentRecorder(db_session).commit(stale.plan, stale.expected_versions, "OR-0203")

        assert exc_info.value.account_id == account.id
        assert service.repository.find_by_idempotency_key("OR-0203") is None
        db_session.refresh(account)
        assert account.credit_balance == 0

    def test_retry_after_conflict_succeeds(self, db_session, account, november_dues):
        service = PaymentService(db_session)
        stale = service.preview(account.id, 50000, PAYMENT_DATE)
        service.commit(account.id, 20000, PAYMENT_DATE, idempotency_key="OR-0204")

        with pytest.raises(ConflictError):
            PaymentRecorder(db_session).commit(stale.plan, stale.expected_versions, "OR-0205")
        result = service.commit(account.id, 50000, PAYMENT_DATE, idempotency_key="OR-0205")

        assert result.allocations[0].base_amount == 50000
        obligation = db_session.get(Obligation, november_dues.id)
        assert obligation.base_paid == 70000


@pytest.mark.integration
class TestInvariantEnforcement:
    """Test that broken plans never reach storage."""

    def test_tampered_plan_rejected(self, db_session, account, november_dues):
        preview = PaymentService(db_session).preview(account.id, 95000, PAYMENT_DATE)
        tampered = replace(preview.plan, net_credit_delta=preview.plan.net_credit_delta + 1)

        with pytest.raises(InvariantViolationError):
            PaymentRecorder(db_session).commit(tampered, preview.expected_versions, "OR-0300")

        assert db_session.scalars(select(TransactionRecord)).all() == []
        assert db_session.scalars(select(CreditLedgerEntry)).all() == []

    def test_plan_for_other_account_rejected(self, db_session, account, make_account, november_dues):
        other = make_account(name="Unit 202")
        preview = PaymentService(db_session).preview(account.id, 95000, PAYMENT_DATE)
        versions = replace(preview.expected_versions, account_id=other.id)

        with pytest.raises(ValidationError):
            PaymentRecorder(db_session).commit(preview.plan, versions, "OR-0301")
