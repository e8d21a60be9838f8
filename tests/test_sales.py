import os
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

from eventrecon.models import (
    DecisionSource,
    InternalEvent,
    MatchDecision,
    SalePhase,
    SaleSignalKind,
    SaleWindow,
)
from eventrecon.sales import (
    classify,
    display_title,
    is_relevant_sale_window,
    list_sale_alerts,
    sale_status,
    short_window_name,
)
from eventrecon.storage import init_db, upsert_decision, upsert_events

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _window(name, start_hours=None, end_hours=None) -> SaleWindow:
    return SaleWindow(
        name=name,
        start_time=NOW + timedelta(hours=start_hours) if start_hours is not None else None,
        end_time=NOW + timedelta(hours=end_hours) if end_hours is not None else None,
    )


class SaleWindowRelevanceTests(unittest.TestCase):
    def test_deny_rules_win_over_allow(self) -> None:
        self.assertFalse(is_relevant_sale_window("Resale"))
        self.assertFalse(is_relevant_sale_window("VIP Package Presale"))
        self.assertFalse(is_relevant_sale_window("Platinum Presale"))
        self.assertFalse(is_relevant_sale_window("Public Onsale"))
        self.assertFalse(is_relevant_sale_window("Onsale"))
        self.assertFalse(is_relevant_sale_window("Official Platinum Onsale"))

    def test_allowed_names(self) -> None:
        for name in (
            "Artist Presale",
            "Pre-Sale",
            "Fan Club Presale",
            "Early Access",
            "Preferred Tickets",
            "Preferred Seating",
            "Select Seats",
        ):
            self.assertTrue(is_relevant_sale_window(name), name)

    def test_empty_or_unknown_names(self) -> None:
        self.assertFalse(is_relevant_sale_window(None))
        self.assertFalse(is_relevant_sale_window(""))
        self.assertFalse(is_relevant_sale_window("Citi Cardmember Tickets"))

    def test_partner_variant(self) -> None:
        self.assertTrue(is_relevant_sale_window("Citi Cardmember Tickets", include_partners=True))
        self.assertTrue(is_relevant_sale_window("Live Nation Mobile App Offer", include_partners=True))
        self.assertFalse(is_relevant_sale_window("Verizon General Admission", include_partners=True))
        self.assertFalse(is_relevant_sale_window("Resale", include_partners=True))


class ClassifyTests(unittest.TestCase):
    def test_phases(self) -> None:
        self.assertEqual(classify(_window("Presale"), NOW), SalePhase.UNKNOWN)
        self.assertEqual(classify(_window("Presale", 1, 5), NOW), SalePhase.UPCOMING)
        self.assertEqual(classify(_window("Presale", -1, 5), NOW), SalePhase.ACTIVE)
        self.assertEqual(classify(_window("Presale", -1), NOW), SalePhase.ACTIVE)
        self.assertEqual(classify(_window("Presale", -5, -1), NOW), SalePhase.ENDED)

    def test_boundaries(self) -> None:
        self.assertEqual(classify(_window("Presale", 0, 2), NOW), SalePhase.ACTIVE)
        self.assertEqual(classify(_window("Presale", -2, 0), NOW), SalePhase.ENDED)


class SaleStatusTests(unittest.TestCase):
    def test_active_presale_wins(self) -> None:
        windows = [_window("Fan Club Presale", 24, 48), _window("Artist Presale", -2, 10)]
        signal = sale_status(windows, NOW + timedelta(days=7), NOW)
        self.assertEqual(signal.kind, SaleSignalKind.ACTIVE_PRESALE)
        self.assertEqual(signal.at, NOW + timedelta(hours=10))
        self.assertEqual(signal.window.name, "Artist Presale")

    def test_soonest_upcoming_presale(self) -> None:
        windows = [_window("Fan Club Presale", 48, 72), _window("Artist Presale", 24, 30)]
        signal = sale_status(windows, None, NOW)
        self.assertEqual(signal.kind, SaleSignalKind.UPCOMING_PRESALE)
        self.assertEqual(signal.at, NOW + timedelta(hours=24))

    def test_irrelevant_windows_ignored(self) -> None:
        windows = [_window("Resale", -2, 10), _window("Platinum Presale", -2, 10)]
        self.assertIsNone(sale_status(windows, None, NOW))

    def test_future_onsale(self) -> None:
        on_sale = NOW + timedelta(days=3)
        signal = sale_status([_window("Artist Presale", -10, -5)], on_sale, NOW)
        self.assertEqual(signal.kind, SaleSignalKind.FUTURE_ONSALE)
        self.assertEqual(signal.at, on_sale)
        self.assertIsNone(signal.window)

    def test_nothing_relevant(self) -> None:
        self.assertIsNone(sale_status([], NOW - timedelta(days=1), NOW))
        self.assertIsNone(sale_status([], None, NOW))


class DisplayTitleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.event = InternalEvent("E1", "Texas MBB", "moody-center", "Moody Center", NOW + timedelta(days=1))

    def _decision(self, **kwargs) -> MatchDecision:
        values = dict(
            event_id="E1",
            matched=True,
            confidence=0.9,
            source=DecisionSource.ARBITRATED,
            last_checked=NOW,
            external_id="X1",
            external_name="Texas Longhorns Mens Basketball vs. Texas A&M",
        )
        values.update(kwargs)
        return MatchDecision(**values)

    def test_external_title_when_preferred(self) -> None:
        decision = self._decision(prefer_external_title=True)
        self.assertEqual(display_title(self.event, decision), decision.external_name)

    def test_internal_title_otherwise(self) -> None:
        self.assertEqual(display_title(self.event, self._decision()), "Texas MBB")
        self.assertEqual(display_title(self.event, None), "Texas MBB")
        self.assertEqual(
            display_title(self.event, self._decision(matched=False, prefer_external_title=True)),
            "Texas MBB",
        )

    def test_short_window_name(self) -> None:
        self.assertEqual(short_window_name("Fan Club Presale"), "Fan Club")
        self.assertEqual(short_window_name("Early Access"), "Early Access")
        self.assertIsNone(short_window_name("Presale"))
        self.assertIsNone(short_window_name(None))


class ListSaleAlertsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = os.path.join(self.tmpdir.name, "eventrecon.db")
        init_db(self.db_path)

    def tearDown(self) -> None:
        self.tmpdir.cleanup()

    def _event(self, event_id: str, title: str, days: int, status: str = "scheduled") -> InternalEvent:
        return InternalEvent(event_id, title, "moody-center", "Moody Center", NOW + timedelta(days=days), status)

    def _matched(self, event_id: str, windows, on_sale_start=None, name="Listing") -> MatchDecision:
        return MatchDecision(
            event_id=event_id,
            matched=True,
            confidence=0.9,
            source=DecisionSource.AUTO,
            last_checked=NOW,
            external_id=f"X-{event_id}",
            external_name=name,
            sale_windows=windows,
            on_sale_start=on_sale_start,
        )

    def test_alerts_sorted_active_first(self) -> None:
        upsert_events(
            self.db_path,
            [
                self._event("E1", "Upcoming Presale Show", 30),
                self._event("E2", "Active Presale Show", 40),
                self._event("E3", "Onsale Show", 20),
                self._event("E4", "Cancelled Show", 10, status="cancelled"),
                self._event("E5", "Past Show", -1),
            ],
        )
        upsert_decision(self.db_path, self._matched("E1", [_window("Artist Presale", 24, 48)]))
        upsert_decision(self.db_path, self._matched("E2", [_window("Fan Club Presale", -2, 20)]))
        upsert_decision(self.db_path, self._matched("E3", [], on_sale_start=NOW + timedelta(hours=6)))
        upsert_decision(self.db_path, self._matched("E4", [_window("Artist Presale", -2, 20)]))
        upsert_decision(self.db_path, self._matched("E5", [_window("Artist Presale", -2, 20)]))

        alerts = list_sale_alerts(self.db_path, now=NOW)

        self.assertEqual([a.event_id for a in alerts], ["E2", "E3", "E1"])
        self.assertEqual(alerts[0].kind, SaleSignalKind.ACTIVE_PRESALE)
        self.assertEqual(alerts[0].window_name, "Fan Club")
        self.assertEqual(alerts[1].kind, SaleSignalKind.FUTURE_ONSALE)
        self.assertIsNone(alerts[1].window_name)
        self.assertEqual(alerts[2].kind, SaleSignalKind.UPCOMING_PRESALE)

    def test_unmatched_events_skipped(self) -> None:
        upsert_events(self.db_path, [self._event("E1", "Show", 5)])
        upsert_decision(
            self.db_path,
            MatchDecision(event_id="E1", matched=False, confidence=0.0, source=DecisionSource.NONE, last_checked=NOW),
        )
        self.assertEqual(list_sale_alerts(self.db_path, now=NOW), [])

    def test_display_title_used(self) -> None:
        upsert_events(self.db_path, [self._event("E1", "Texas MBB", 5)])
        decision = self._matched("E1", [_window("Presale", -1, 5)], name="Texas Longhorns vs Baylor")
        decision.prefer_external_title = True
        upsert_decision(self.db_path, decision)
        alerts = list_sale_alerts(self.db_path, now=NOW)
        self.assertEqual(alerts[0].title, "Texas Longhorns vs Baylor")


if __name__ == "__main__":
    unittest.main()
