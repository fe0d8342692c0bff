"""
Security Tests

Covers:
1. Administrator credential checks (bcrypt hash, constant-time username compare)
2. Strict validation of request bodies
3. Stripping of markup from free text that is shown back to administrators
4. Injection attempts through keys and query parameters stay inert
"""

import pytest
from datetime import date
from pydantic import ValidationError

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from conftest import DAY, make_booking, make_settings
from labreserve.services import slot_key
from labreserve.services.errors import InvalidArgument
from labreserve.services.records import BookingFilter
from labreserve.utils.security import hash_password, verify_admin_credentials, verify_password


class TestAdminCredentials:

    @pytest.fixture(scope="class")
    def settings(self):
        return make_settings(admin_username="labadmin", admin_password_hash=hash_password("s3cret!"))

    def test_hash_is_not_plaintext(self):
        hashed = hash_password("s3cret!")
        assert hashed != "s3cret!"
        assert verify_password("s3cret!", hashed)
        assert not verify_password("S3cret!", hashed)

    def test_valid_credentials(self, settings):
        assert verify_admin_credentials("labadmin", "s3cret!", settings)

    @pytest.mark.parametrize("username,password", [
        ("labadmin", "wrong"),
        ("admin", "s3cret!"),
        ("", "s3cret!"),
        ("labadmin", None),
    ])
    def test_invalid_credentials(self, settings, username, password):
        assert not verify_admin_credentials(username, password, settings)

    def test_no_hash_configured_means_no_admin(self):
        settings = make_settings(admin_password_hash="")
        assert not verify_admin_credentials("admin", "", settings)

    def test_malformed_hash_rejected(self):
        assert not verify_password("anything", "not-a-bcrypt-hash")


class TestInputValidation:

    def _request(self, **overrides):
        from labreserve.schemas.booking import BookingRequestCreate

        data = {
            "user_name": "Ana",
            "user_email": "ana@lab.edu",
            "slots": [{"date": "2025-03-12", "equipment_id": 1, "time_slot_id": "08:00"}],
        }
        data.update(overrides)
        return BookingRequestCreate(**data)

    def test_valid_request(self):
        request = self._request(user_email="  Ana@Lab.EDU ")
        assert request.user_email == "ana@lab.edu"
        assert request.slots[0].date == date(2025, 3, 12)

    @pytest.mark.parametrize("overrides", [
        {"user_name": ""},
        {"user_email": "ana"},
        {"user_email": "ana@lab"},
        {"slots": []},
        {"slots": [{"date": "2025-03-12", "equipment_id": 0, "time_slot_id": "08:00"}]},
        {"slots": [{"date": "12/03/2025", "equipment_id": 1, "time_slot_id": "08:00"}]},
        {"slots": [{"date": "2025-03-12", "equipment_id": 1, "time_slot_id": "08:00"}] * 51},
    ])
    def test_invalid_request_rejected(self, overrides):
        with pytest.raises(ValidationError):
            self._request(**overrides)

    def test_block_dates_checked(self):
        from labreserve.schemas.booking import BlockCreate

        with pytest.raises(ValidationError):
            BlockCreate(block_type="single", start_date=DAY, end_date=DAY)
        with pytest.raises(ValidationError):
            BlockCreate(block_type="weekly", start_date=DAY)
        assert BlockCreate(block_type="indefinite", start_date=DAY).equipment_id == 0


class TestMarkupStripping:

    def test_script_tags_removed_from_name(self):
        from labreserve.schemas.booking import BookingRequestCreate

        request = BookingRequestCreate(
            user_name="Ana<script>alert('x')</script>",
            user_email="ana@lab.edu",
            user_group="<img src=x onerror=alert(1)>",
            slots=[{"date": "2025-03-12", "equipment_id": 1, "time_slot_id": "08:00"}],
        )
        assert request.user_name == "Ana"
        assert "onerror=" not in request.user_group

    def test_block_reason_sanitized(self):
        from labreserve.schemas.booking import BlockCreate

        block = BlockCreate(block_type="single", start_date=DAY, reason="<script>x</script> lamp")
        assert block.reason == "lamp"


class TestInjection:

    @pytest.mark.parametrize("time_slot_id", [
        "08:00'; DROP TABLE bookings; --",
        "08-00",
        "../../etc/passwd",
        "",
    ])
    def test_hostile_slot_ids_cannot_form_keys(self, time_slot_id):
        with pytest.raises(InvalidArgument):
            slot_key.derive(DAY, 1, time_slot_id)

    def test_filter_values_are_bound_parameters(self, store):
        """An injection attempt in a filter value matches nothing and drops nothing"""
        store.insert(make_booking())

        found = store.find_where(BookingFilter(user_email="' OR '1'='1"))

        assert found == []
        assert store.count(BookingFilter()) == 1
