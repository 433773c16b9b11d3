"""Tests for business-rule validation."""

from datetime import date

import pytest

from ledger_sync.config.settings import LedgerSettings
from ledger_sync.models.entry import EntryUpdate, FilterSpec
from ledger_sync.models.result import ErrorCode
from ledger_sync.validation import (
    method_requires_card,
    validate_filters,
    validate_new_entry,
    validate_page_size,
    validate_update,
    validate_upload,
)


class TestEntryRules:
    """Card methods and drafts."""

    @pytest.mark.parametrize("method_id, expected", [
        ("credit_card", True),
        ("debit_card", True),
        ("cash", False),
        ("pix", False),
        (None, False),
    ])
    def test_method_requires_card(self, method_id, expected):
        assert method_requires_card(method_id) is expected

    def test_card_method_without_card(self, make_draft):
        error = validate_new_entry(make_draft(method_id="credit_card"))
        assert error.code == ErrorCode.VALIDATION
        assert "card_id" in error.message

    def test_valid_drafts(self, make_draft):
        assert validate_new_entry(make_draft()) is None
        assert validate_new_entry(make_draft(method_id="credit_card", card_id="c1")) is None

    def test_zero_amount_is_allowed(self, make_draft):
        assert validate_new_entry(make_draft(amount=0)) is None

    def test_update_switching_to_card_and_clearing_card(self):
        error = validate_update(EntryUpdate(method_id="debit_card", card_id=None))
        assert error.code == ErrorCode.VALIDATION

    def test_update_switching_to_card_only(self):
        # The stored card_id is not consulted
        assert validate_update(EntryUpdate(method_id="debit_card")) is None

    def test_update_clearing_card_alone(self):
        assert validate_update(EntryUpdate(card_id=None)) is None


class TestQueryRules:
    """Filters and page sizes."""

    def test_inverted_range(self):
        error = validate_filters(FilterSpec(start_date=date(2024, 3, 31), end_date=date(2024, 3, 1)))
        assert error.code == ErrorCode.VALIDATION

    def test_single_day_range(self):
        assert validate_filters(FilterSpec(start_date=date(2024, 3, 1), end_date=date(2024, 3, 1))) is None

    def test_open_range(self):
        assert validate_filters(FilterSpec(start_date=date(2024, 3, 1))) is None

    def test_page_size(self):
        assert validate_page_size(1) is None
        assert validate_page_size(0).code == ErrorCode.VALIDATION


class TestUploadRules:
    """Attachment size and type limits."""

    @pytest.fixture
    def settings(self):
        return LedgerSettings(max_attachment_size_mb=1, allowed_attachment_types="image/jpeg, application/pdf")

    def test_accepted(self, settings):
        assert validate_upload(1024, "image/jpeg", settings) is None
        assert validate_upload(1024, "IMAGE/JPEG", settings) is None

    def test_empty(self, settings):
        assert "empty" in validate_upload(0, "image/jpeg", settings).message

    def test_oversized(self, settings):
        assert validate_upload(1024 * 1024 + 1, "image/jpeg", settings).code == ErrorCode.VALIDATION

    def test_all_issues_reported(self, settings):
        error = validate_upload(0, "text/html", settings)
        assert "empty" in error.message
        assert "unsupported type" in error.message
