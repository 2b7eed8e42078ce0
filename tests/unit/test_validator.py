"""
Tests for TransactionValidator.

The checks run in a fixed order and stop at the first failure; the order is
observable, so several tests build inputs that fail more than one check.
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.dtos import (
    AccountResolution,
    AccountSnapshot,
    AccountStatus,
    ProposedTransaction,
    RejectReason,
)
from ledger_kernel.domain.validator import TransactionValidator

PROCESSING_DATE = date(2024, 1, 15)


def _snapshot(
    balance="1900.00",
    limit="2000.00",
    status=AccountStatus.ACTIVE,
    expiration=date(2030, 1, 1),
) -> AccountSnapshot:
    return AccountSnapshot(
        account_id="00000000001",
        current_balance=Decimal(balance),
        credit_limit=Decimal(limit),
        active_status=status,
        expiration_date=expiration,
    )


def _found(snapshot: AccountSnapshot | None) -> AccountResolution:
    return AccountResolution(card_found=True, account_id="00000000001", account=snapshot)


def _proposal(amount="50.00", card="4000000000000001", input_error=None) -> ProposedTransaction:
    return ProposedTransaction(
        card_number=card,
        amount=Decimal(amount) if amount is not None else None,
        type_code="01",
        category_code="0001",
        input_error=input_error,
    )


@pytest.fixture
def validator() -> TransactionValidator:
    return TransactionValidator()


class TestAcceptance:
    def test_valid_purchase_accepted(self, validator):
        decision = validator.validate(_proposal(), _found(_snapshot()), PROCESSING_DATE)
        assert decision.accepted
        assert decision.reason is None

    def test_exactly_at_limit_accepted(self, validator):
        decision = validator.validate(_proposal("100.00"), _found(_snapshot()), PROCESSING_DATE)
        assert decision.accepted

    def test_expiring_on_processing_date_accepted(self, validator):
        snapshot = _snapshot(expiration=PROCESSING_DATE)
        assert validator.validate(_proposal(), _found(snapshot), PROCESSING_DATE).accepted

    def test_credit_always_fits_limit(self, validator):
        decision = validator.validate(_proposal("-500.00"), _found(_snapshot()), PROCESSING_DATE)
        assert decision.accepted


class TestRejectionReasons:
    def test_malformed_input_is_104(self, validator):
        decision = validator.validate(
            _proposal(input_error="amount: not a decimal number"),
            _found(_snapshot()),
            PROCESSING_DATE,
        )
        assert decision.reason is RejectReason.INVALID_DATA
        assert decision.reason_text == "INVALID TRANSACTION DATA"

    def test_missing_amount_is_104(self, validator):
        decision = validator.validate(_proposal(amount=None), _found(_snapshot()), PROCESSING_DATE)
        assert decision.reason is RejectReason.INVALID_DATA

    def test_missing_card_is_104(self, validator):
        decision = validator.validate(_proposal(card=None), AccountResolution.card_not_found(), PROCESSING_DATE)
        assert decision.reason is RejectReason.INVALID_DATA

    def test_unknown_card_is_100(self, validator):
        decision = validator.validate(_proposal(), AccountResolution.card_not_found(), PROCESSING_DATE)
        assert decision.reason is RejectReason.INVALID_CARD
        assert decision.reason_text == "INVALID CARD NUMBER FOUND"

    def test_card_without_account_is_101(self, validator):
        decision = validator.validate(_proposal(), _found(None), PROCESSING_DATE)
        assert decision.reason is RejectReason.ACCOUNT_NOT_FOUND

    def test_over_limit_is_102(self, validator):
        # 1900.00 + 200.00 > 2000.00
        decision = validator.validate(_proposal("200.00"), _found(_snapshot()), PROCESSING_DATE)
        assert decision.reason is RejectReason.OVER_LIMIT
        assert decision.reason_text == "OVERLIMIT TRANSACTION"

    def test_one_cent_over_limit_is_102(self, validator):
        decision = validator.validate(_proposal("100.01"), _found(_snapshot()), PROCESSING_DATE)
        assert decision.reason is RejectReason.OVER_LIMIT

    def test_expired_is_103(self, validator):
        snapshot = _snapshot(expiration=date(2024, 1, 14))
        decision = validator.validate(_proposal(), _found(snapshot), PROCESSING_DATE)
        assert decision.reason is RejectReason.ACCOUNT_EXPIRED

    @pytest.mark.parametrize("status", [AccountStatus.DORMANT, AccountStatus.SUSPENDED])
    def test_inactive_account_rejected(self, validator, status):
        decision = validator.validate(_proposal(), _found(_snapshot(status=status)), PROCESSING_DATE)
        assert decision.reason is RejectReason.ACCOUNT_INACTIVE
        assert decision.reason_text == "ACCOUNT NOT ACTIVE"


class TestLegacyRange:
    def test_debit_below_range_is_104(self, validator):
        snapshot = _snapshot(balance="-9999999999.00")
        decision = validator.validate(_proposal("-5.00"), _found(snapshot), PROCESSING_DATE)
        assert decision.reason is RejectReason.INVALID_DATA

    def test_debit_to_range_floor_accepted(self, validator):
        snapshot = _snapshot(balance="-9999999999.00")
        assert validator.validate(_proposal("-0.99"), _found(snapshot), PROCESSING_DATE).accepted

    def test_charge_above_range_is_102(self, validator):
        snapshot = _snapshot(balance="9999999999.00", limit="9999999999.99")
        decision = validator.validate(_proposal("5.00"), _found(snapshot), PROCESSING_DATE)
        assert decision.reason is RejectReason.OVER_LIMIT


class TestCheckOrder:
    def test_over_limit_wins_over_expired(self, validator):
        snapshot = _snapshot(expiration=date(2023, 12, 31))
        decision = validator.validate(_proposal("500.00"), _found(snapshot), PROCESSING_DATE)
        assert decision.reason is RejectReason.OVER_LIMIT

    def test_expired_wins_over_inactive(self, validator):
        snapshot = _snapshot(expiration=date(2023, 12, 31), status=AccountStatus.SUSPENDED)
        decision = validator.validate(_proposal(), _found(snapshot), PROCESSING_DATE)
        assert decision.reason is RejectReason.ACCOUNT_EXPIRED

    def test_malformed_wins_over_unknown_card(self, validator):
        decision = validator.validate(
            _proposal(input_error="bad"), AccountResolution.card_not_found(), PROCESSING_DATE
        )
        assert decision.reason is RejectReason.INVALID_DATA


class TestRejectReason:
    @pytest.mark.parametrize(
        "reason, file_code",
        [
            (RejectReason.INVALID_CARD, "0100"),
            (RejectReason.ACCOUNT_NOT_FOUND, "0101"),
            (RejectReason.OVER_LIMIT, "0102"),
            (RejectReason.ACCOUNT_EXPIRED, "0103"),
            (RejectReason.INVALID_DATA, "0104"),
            (RejectReason.ACCOUNT_INACTIVE, "0106"),
        ],
    )
    def test_file_codes(self, reason, file_code):
        assert reason.file_code == file_code

    def test_severity(self):
        assert RejectReason.INVALID_CARD.severity.value == "ERROR"
        assert RejectReason.OVER_LIMIT.severity.value == "WARNING"
