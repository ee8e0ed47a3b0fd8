"""Tests for the team health report."""

from datetime import datetime

from analytics.health_report import HealthEntry, TeamHealthReport
from analytics.pace import PaceClassifier
from domain.aggregates import CheckIn, EntityType

MID_Q1 = datetime(2025, 2, 15)


def metrics(progress, history=()):
    check_ins = [
        CheckIn(entity_type=EntityType.OBJECTIVE, entity_id="o", new_progress=p, as_of_date=d)
        for d, p in history
    ]
    return PaceClassifier().classify(progress, quarter=1, year=2025, check_ins=check_ins, now=MID_Q1)


RECENT = [(datetime(2025, 2, 14), 0)]


class TestTeamHealthReport:
    """Tests for TeamHealthReport.build()."""

    def test_summary_counts(self):
        report = TeamHealthReport.build([
            ("a", "Ahead", metrics(80, [(datetime(2025, 2, 14), 80)])),
            ("b", "On track", metrics(50, [(datetime(2025, 2, 14), 50)])),
            ("c", "At risk", metrics(30, [(datetime(2025, 2, 14), 30)])),
            ("d", "Behind", metrics(10, [(datetime(2025, 2, 14), 10)])),
        ])
        summary = report.summary
        assert summary.total == 4
        assert (summary.ahead, summary.on_track, summary.at_risk, summary.behind) == (1, 1, 1, 1)
        assert summary.average_progress == 42.5
        assert summary.stalled == 0
        assert summary.attention_needed == 0

    def test_needs_attention_order(self):
        report = TeamHealthReport.build([
            ("fine", "Fine", metrics(50, [(datetime(2025, 2, 14), 50)])),
            ("risk", "At risk", metrics(30, [(datetime(2025, 2, 14), 30)])),
            ("behind-small", "Behind a bit", metrics(12, [(datetime(2025, 2, 14), 12)])),
            ("behind-big", "Behind a lot", metrics(5, [(datetime(2025, 2, 14), 5)])),
            ("stale", "Stale", metrics(50, [(datetime(2025, 1, 20), 50)])),
        ])
        ids = [e.entity_id for e in report.needs_attention]
        assert ids == ["behind-big", "behind-small", "risk", "stale"]
        assert report.summary.attention_needed == 1

    def test_stalled_before_attention_needed(self):
        stalled = metrics(50, [(datetime(2025, 2, 1), 50), (datetime(2025, 2, 14), 50)])
        stale = metrics(50, [(datetime(2025, 1, 10), 50)])
        report = TeamHealthReport.build([("stale", "Stale", stale), ("stalled", "Stalled", stalled)])
        assert [e.entity_id for e in report.needs_attention] == ["stalled", "stale"]
        assert report.summary.stalled == 1

    def test_accepts_entries(self):
        entry = HealthEntry(entity_id="kr", title="KR", entity_type=EntityType.KEY_RESULT, metrics=metrics(50, RECENT))
        report = TeamHealthReport.build([entry])
        assert report.entries == [entry]
        assert report.needs_attention == []

    def test_empty(self):
        report = TeamHealthReport.build([])
        assert report.summary.total == 0
        assert report.summary.average_progress == 0.0
        assert report.needs_attention == []
