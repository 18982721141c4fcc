"""
Unit tests for household validation and verification-code helpers
"""
from datetime import datetime, timezone

import pytest

from pkgdesk.app.utils import (
    format_time,
    generate_otp,
    new_package_id,
    normalize_household_id,
    pack_otp,
    parse_time,
    unpack_otp,
    validate_household_id,
)


class TestHouseholdId:

    @pytest.mark.parametrize('household_id', ['3A1', '9C3', '10B4', '11A1', '19C3', '12B2'])
    def test_accepts_valid_units(self, household_id):
        assert validate_household_id(household_id)

    @pytest.mark.parametrize('household_id', [
        '2A1',    # below floor 3
        '20A1',   # above floor 19
        '11A4',   # wing A has doors 1-3
        '11C4',   # wing C has doors 1-3
        '11B5',   # wing B has doors 1-4
        '11D1',   # no wing D
        '11A0',
        '011A1',
        '11a1',   # callers normalize first
        '11A1\n',
        ' 11A1',
        '',
    ])
    def test_rejects_invalid_units(self, household_id):
        assert not validate_household_id(household_id)

    def test_normalize(self):
        assert normalize_household_id('  11a1 ') == '11A1'
        assert normalize_household_id(None) == ''


class TestVerificationCodes:

    def test_generate_otp_is_numeric_with_requested_length(self):
        code = generate_otp(6)
        assert len(code) == 6
        assert code.isdigit()
        assert len(generate_otp(4)) == 4

    def test_pack_and_unpack(self):
        expires = datetime(2025, 3, 1, 2, 5, tzinfo=timezone.utc)
        stored = pack_otp('012345', expires)
        assert stored == '012345|2025-03-01T02:05:00Z'
        assert unpack_otp(stored) == ('012345', expires)

    @pytest.mark.parametrize('value', [None, '', '123456', '|2025-03-01T02:05:00Z', '123456|not-a-date'])
    def test_unpack_malformed(self, value):
        assert unpack_otp(value) is None


class TestTimes:

    def test_parse_accepts_z_suffix_and_naive(self):
        assert parse_time('2025-03-01T02:00:00Z') == datetime(2025, 3, 1, 2, 0, tzinfo=timezone.utc)
        assert parse_time(datetime(2025, 3, 1, 2, 0)).tzinfo is timezone.utc
        assert parse_time('') is None
        assert parse_time('garbage') is None

    def test_format_round_trips(self):
        dt = datetime(2025, 3, 1, 2, 0, 30, 123000, tzinfo=timezone.utc)
        assert parse_time(format_time(dt)) == dt

    def test_package_id_uses_epoch_millis(self):
        dt = datetime(2025, 3, 1, 2, 0, tzinfo=timezone.utc)
        assert new_package_id(dt) == f'PKG{int(dt.timestamp() * 1000)}'
