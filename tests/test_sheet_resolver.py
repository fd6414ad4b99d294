"""Unit tests for SheetResolver."""
from datetime import date, datetime, timezone
from unittest.mock import Mock
from zoneinfo import ZoneInfo

from scraper.sheet_resolver import SheetResolver, local_today, sheet_name_candidates

SAT_3_JAN = date(2026, 1, 3)


def client_with(*titles):
    client = Mock()
    client.sheet_exists.side_effect = lambda name: name in titles
    return client


class TestSheetNameCandidates:

    def test_formats_for_one_date(self):
        assert sheet_name_candidates(date(2026, 1, 5)) == [
            'Mon 5 Jan',
            'Monday, 5 Jan',
            'Monday 5 Jan',
            'Mon, 5 Jan',
            '5 Jan',
        ]


class TestFindNextAvailableSheet:

    def test_skips_weekend(self):
        resolver = SheetResolver(client_with('Mon 5 Jan'))
        found = resolver.find_next_available_sheet(SAT_3_JAN)

        assert found.sheet_name == 'Mon 5 Jan'
        assert found.date == date(2026, 1, 5)
        assert found.offset_days == 2

    def test_accepts_long_day_name(self):
        resolver = SheetResolver(client_with('Monday, 5 Jan'))
        assert resolver.find_next_available_sheet(SAT_3_JAN).sheet_name == 'Monday, 5 Jan'

    def test_not_found_within_bound(self):
        client = client_with()
        resolver = SheetResolver(client, search_days=30)

        assert resolver.find_next_available_sheet(SAT_3_JAN) is None
        assert client.sheet_exists.call_count == 30 * len(sheet_name_candidates(SAT_3_JAN))

    def test_sheet_beyond_bound_is_ignored(self):
        resolver = SheetResolver(client_with('Mon 5 Jan'), search_days=2)
        assert resolver.find_next_available_sheet(SAT_3_JAN) is None


class TestResolveWindow:

    def test_gap_days_are_skipped_not_caught_up(self):
        client = client_with('Mon 5 Jan', 'Tuesday, 6 Jan', 'Thu 8 Jan', 'Fri 9 Jan')
        resolver = SheetResolver(client)

        window = resolver.resolve_window(3, SAT_3_JAN)

        assert [s.sheet_name for s in window] == ['Mon 5 Jan', 'Tuesday, 6 Jan']
        assert [s.offset_days for s in window] == [2, 3]

    def test_full_week_with_midweek_gap(self):
        client = client_with('Mon 5 Jan', 'Tuesday, 6 Jan', 'Thu 8 Jan', 'Fri 9 Jan', 'Mon 12 Jan')
        resolver = SheetResolver(client)

        window = resolver.resolve_window(7, SAT_3_JAN)

        assert [s.date.isoformat() for s in window] == [
            '2026-01-05', '2026-01-06', '2026-01-08', '2026-01-09'
        ]

    def test_no_sheets_is_empty(self):
        assert SheetResolver(client_with()).resolve_window(7, SAT_3_JAN) == []


class TestLocalToday:

    def test_pinned_to_noon_in_configured_zone(self):
        tz = ZoneInfo('America/Los_Angeles')
        # 06:30 UTC on the 6th is still the evening of the 5th in Los Angeles
        now = datetime(2026, 1, 6, 6, 30, tzinfo=timezone.utc)

        today = local_today(tz, now)

        assert today.date() == date(2026, 1, 5)
        assert (today.hour, today.minute) == (12, 0)
        assert today.tzinfo == tz
