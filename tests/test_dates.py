"""
RequestGuard: User Timezone Helper Tests
==========================================
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from requestguard.auth import AppUser
from requestguard.dates import from_user_date, to_user_date


class TestToUserDate:

    def test_string_is_read_as_utc(self):
        result = to_user_date("2024-01-15T12:00:00", tz="America/Sao_Paulo")

        assert result.hour == 9
        assert result.utcoffset().total_seconds() == -3 * 3600

    def test_user_timezone_wins(self):
        user = AppUser(id=1, timezone="Asia/Tokyo")
        result = to_user_date("2024-01-15T12:00:00", user=user, tz="America/Sao_Paulo")

        assert result.hour == 21

    def test_aware_datetime(self):
        value = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)
        result = to_user_date(value, tz="Europe/Lisbon")

        assert result.hour == 13

    def test_defaults_to_utc(self):
        result = to_user_date("2024-01-15T12:00:00")
        assert result.tzinfo == ZoneInfo("UTC")
        assert result.hour == 12


class TestFromUserDate:

    def test_string_in_user_timezone(self):
        result = from_user_date("2024-01-15 09:00", tz="America/Sao_Paulo")

        assert result == datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

    def test_user_without_timezone_uses_argument(self):
        user = AppUser(id=1)
        result = from_user_date("2024-01-15 09:00", user=user, tz="Asia/Tokyo")

        assert result.hour == 0

    def test_aware_value_only_converted(self):
        value = datetime(2024, 1, 15, 9, 0, tzinfo=ZoneInfo("America/Sao_Paulo"))

        assert from_user_date(value, tz="Asia/Tokyo").hour == 12
