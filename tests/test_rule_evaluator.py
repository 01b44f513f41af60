"""
Tests for dwell-time, segment-time and overspeed detection
"""

import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy.exc import SQLAlchemyError

from geofine.core.errors import RuleEvaluationPersistenceError
from geofine.models import Infraction, Fine
from geofine.models.infractions import InfractionType, InfractionStatus
from geofine.modules.arrivals.service import SegmentAnchor
from geofine.modules.infractions.service import RuleEvaluator, compute_fine, read_speed_kmh


# ============================================
# Helpers
# ============================================

class TestComputeFine:

    def test_base_plus_rate(self):
        assert compute_fine(Decimal("10.00"), 3, Decimal("2.00")) == Decimal("16.00")

    def test_rounds_to_cents_half_up(self):
        assert compute_fine(Decimal("0"), 1, Decimal("0.125")) == Decimal("0.13")

    def test_missing_rate_is_zero(self):
        assert compute_fine(Decimal("5"), 7, None) == Decimal("5.00")


class TestReadSpeed:

    @pytest.mark.parametrize("payload, kmh", [
        ({"position": {"speed": 37.8}}, 70),
        ({"position": {"speed": 0}}, 0),
        ({"speed": "10"}, 19),
        ({"position": {"speed": 27.0}, "speed": 99}, 50),
    ])
    def test_knots_to_kmh(self, payload, kmh):
        result = read_speed_kmh(payload)
        assert result.value == kmh
        assert result.clean

    @pytest.mark.parametrize("payload", [{}, {"position": {}}, {"position": {"speed": "fast"}}, {"speed": True}])
    def test_missing_or_bad_speed_is_zero(self, payload):
        result = read_speed_kmh(payload)
        assert result.value == 0
        assert len(result.warnings) == 1


# ============================================
# Dwell time
# ============================================

class TestDwellTime:

    def test_exceeded(self, db, tenant, vehicle, make_stop, make_stop_rule, base_time):
        stop = make_stop("Terminal")
        rule = make_stop_rule(stop, max_dwell=5, fine=10, penalty=2)

        infraction = RuleEvaluator(db).check_dwell_time(tenant.id, vehicle.id, stop.id, 8, base_time)

        assert infraction.type == InfractionType.DWELL_TIME
        assert infraction.status == InfractionStatus.PENDING
        assert infraction.detected_at == base_time
        assert infraction.details["violation"] == "exceeded"
        assert infraction.details["excess_minutes"] == 3
        assert infraction.details["rule_id"] == rule.id
        assert infraction.details["fine_usd"] == "16.00"
        assert infraction.fine.amount_usd == Decimal("16.00")

    def test_within_limit(self, db, tenant, vehicle, make_stop, make_stop_rule):
        stop = make_stop("Terminal")
        make_stop_rule(stop, max_dwell=5, fine=10, penalty=2)

        assert RuleEvaluator(db).check_dwell_time(tenant.id, vehicle.id, stop.id, 5) is None
        assert db.query(Infraction).count() == 0

    def test_left_too_early(self, db, tenant, vehicle, make_stop, make_stop_rule):
        stop = make_stop("Terminal")
        make_stop_rule(stop, max_dwell=10, fine=4, penalty=1, min_dwell=3)

        infraction = RuleEvaluator(db).check_dwell_time(tenant.id, vehicle.id, stop.id, 1)
        assert infraction.details["violation"] == "early"
        assert infraction.fine.amount_usd == Decimal("6.00")

    def test_no_rule(self, db, tenant, vehicle, make_stop):
        stop = make_stop("Terminal")
        assert RuleEvaluator(db).check_dwell_time(tenant.id, vehicle.id, stop.id, 500) is None

    def test_inactive_rule_ignored(self, db, tenant, vehicle, make_stop, make_stop_rule):
        stop = make_stop("Terminal")
        make_stop_rule(stop, max_dwell=5, fine=10, penalty=2, active=False)
        assert RuleEvaluator(db).check_dwell_time(tenant.id, vehicle.id, stop.id, 50) is None


# ============================================
# Segment time
# ============================================

class TestSegmentTime:

    def test_late_arrival(self, db, tenant, vehicle, make_stop, make_segment_rule, base_time):
        a, b = make_stop("A", order=1), make_stop("B", order=2)
        make_segment_rule(a, b, max_minutes=10, fine=5, penalty=1.5)
        anchor = SegmentAnchor(from_stop_id=a.id, departed_at=base_time)

        infraction = RuleEvaluator(db).check_segment_time(
            tenant.id, vehicle.id, b.id, base_time + timedelta(minutes=15), anchor
        )

        assert infraction.type == InfractionType.TIME_SEGMENT
        assert infraction.details["violation"] == "late"
        assert infraction.details["travel_minutes"] == 15
        assert infraction.fine.amount_usd == Decimal("12.50")
        assert infraction.detected_at == base_time + timedelta(minutes=15)

    def test_early_arrival(self, db, tenant, vehicle, make_stop, make_segment_rule, base_time):
        a, b = make_stop("A", order=1), make_stop("B", order=2)
        make_segment_rule(a, b, max_minutes=20, fine=5, penalty=1, min_minutes=10)
        anchor = SegmentAnchor(from_stop_id=a.id, departed_at=base_time)

        infraction = RuleEvaluator(db).check_segment_time(
            tenant.id, vehicle.id, b.id, base_time + timedelta(minutes=4), anchor
        )
        assert infraction.details["violation"] == "early"
        assert infraction.fine.amount_usd == Decimal("11.00")

    def test_on_time(self, db, tenant, vehicle, make_stop, make_segment_rule, base_time):
        a, b = make_stop("A", order=1), make_stop("B", order=2)
        make_segment_rule(a, b, max_minutes=10, fine=5, penalty=1.5)
        anchor = SegmentAnchor(from_stop_id=a.id, departed_at=base_time)

        assert RuleEvaluator(db).check_segment_time(
            tenant.id, vehicle.id, b.id, base_time + timedelta(minutes=10), anchor
        ) is None

    def test_no_previous_departure(self, db, tenant, vehicle, make_stop, base_time):
        b = make_stop("B")
        assert RuleEvaluator(db).check_segment_time(tenant.id, vehicle.id, b.id, base_time, None) is None

    def test_out_of_order_events_skipped(self, db, tenant, vehicle, make_stop, make_segment_rule, base_time):
        a, b = make_stop("A", order=1), make_stop("B", order=2)
        make_segment_rule(a, b, max_minutes=1, fine=5, penalty=1)
        anchor = SegmentAnchor(from_stop_id=a.id, departed_at=base_time)

        assert RuleEvaluator(db).check_segment_time(
            tenant.id, vehicle.id, b.id, base_time - timedelta(minutes=30), anchor
        ) is None

    def test_rule_for_other_pair_ignored(self, db, tenant, vehicle, make_stop, make_segment_rule, base_time):
        a, b, c = make_stop("A", order=1), make_stop("B", order=2), make_stop("C", order=3)
        make_segment_rule(a, b, max_minutes=1, fine=5, penalty=1)
        anchor = SegmentAnchor(from_stop_id=a.id, departed_at=base_time)

        assert RuleEvaluator(db).check_segment_time(
            tenant.id, vehicle.id, c.id, base_time + timedelta(minutes=60), anchor
        ) is None


# ============================================
# Overspeed
# ============================================

class TestOverspeed:

    def test_speed_over_zone_limit(self, db, tenant, vehicle, make_speed_zone, base_time):
        zone = make_speed_zone(geofence_id=77, max_kmh=50, fine=10, penalty=2)
        payload = {"geofenceId": 77, "position": {"speed": 37.8}}

        infraction = RuleEvaluator(db).check_overspeed(tenant.id, vehicle.id, payload, base_time)

        assert infraction.type == InfractionType.OVERSPEED
        assert infraction.details["speed_kmh"] == 70
        assert infraction.details["excess_kmh"] == 20
        assert infraction.details["zone_id"] == zone.id
        assert infraction.fine.amount_usd == Decimal("50.00")

    def test_under_limit(self, db, tenant, vehicle, make_speed_zone):
        make_speed_zone(geofence_id=77, max_kmh=60, fine=30, penalty=2)
        payload = {"geofenceId": 77, "position": {"speed": 20}}
        assert RuleEvaluator(db).check_overspeed(tenant.id, vehicle.id, payload) is None

    def test_no_geofence_in_payload(self, db, tenant, vehicle, make_speed_zone):
        make_speed_zone(geofence_id=77, max_kmh=10, fine=30, penalty=2)
        assert RuleEvaluator(db).check_overspeed(tenant.id, vehicle.id, {"position": {"speed": 90}}) is None

    def test_missing_speed_counts_as_zero(self, db, tenant, vehicle, make_speed_zone):
        make_speed_zone(geofence_id=77, max_kmh=0, fine=30, penalty=2)
        assert RuleEvaluator(db).check_overspeed(tenant.id, vehicle.id, {"geofenceId": 77}) is None


class TestPersistence:

    def test_failed_commit_raises_and_writes_nothing(self, db, tenant, vehicle, make_stop,
                                                     make_stop_rule, monkeypatch):
        stop = make_stop("Terminal")
        make_stop_rule(stop, max_dwell=5, fine=10, penalty=2)

        def failing_commit():
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(db, "commit", failing_commit)

        with pytest.raises(RuleEvaluationPersistenceError):
            RuleEvaluator(db).check_dwell_time(tenant.id, vehicle.id, stop.id, 8)

        monkeypatch.undo()
        assert db.query(Infraction).count() == 0
        assert db.query(Fine).count() == 0
