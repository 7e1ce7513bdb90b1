# tests/test_scoring.py
"""
Unit tests for technician scoring and ranking.

Run:
    pytest tests/test_scoring.py -v
"""

from fixit.config import ScoringWeights
from fixit.models.models import Technician
from fixit.services.scoring import (
    active_assignment_counts,
    available_technicians,
    pick_least_loaded,
    rank_technicians,
    score_technician,
)


def _tech(name="T", trade="hvac", buildings=None, is_available=True):
    return Technician(name=name, email=f"{name}@x.edu", trade=trade,
                      assigned_buildings=buildings or [], is_available=is_available)


# ============================================================
# TEST: SCORE COMPONENTS
# ============================================================

def test_scenario_b_scores():
    """Building+trade match beats trade-only match: 26 vs 21"""
    weights = ScoringWeights()
    t1 = _tech("T1", buildings=["Gore Hall"])
    t2 = _tech("T2")
    assert score_technician(t1, "Gore Hall", "hvac", 0, weights) == 26
    assert score_technician(t2, "Gore Hall", "hvac", 0, weights) == 21


def test_scoring_monotonicity():
    """building+trade >= trade only >= neither"""
    weights = ScoringWeights()
    both = score_technician(_tech(buildings=["Gore Hall"]), "Gore Hall", "hvac", 1, weights)
    trade_only = score_technician(_tech(), "Gore Hall", "hvac", 1, weights)
    neither = score_technician(_tech(trade="plumbing"), "Gore Hall", "hvac", 1, weights)
    assert both >= trade_only >= neither
    assert both - trade_only == weights.building_match
    assert trade_only - neither == weights.trade_match


def test_workload_bonus_stops_at_cutoff():
    weights = ScoringWeights()
    tech = _tech()
    scores = [score_technician(tech, "Gore Hall", "hvac", load, weights) for load in range(6)]
    assert scores[0] == 21
    assert scores[1] == 19
    assert scores[2] == 17
    # At and beyond MAX_ACTIVE_ASSIGNMENTS the bonus is gone but the score never goes negative
    assert scores[3] == scores[4] == scores[5] == 15
    assert scores == sorted(scores, reverse=True)


def test_unavailable_technician_loses_availability_points():
    weights = ScoringWeights()
    assert score_technician(_tech(is_available=False), "Gore Hall", "hvac", 0, weights) == 11


def test_custom_weights_are_used():
    weights = ScoringWeights(available=1, building_match=100, trade_match=0, low_workload_bonus=0)
    assert score_technician(_tech(buildings=["Gore Hall"]), "Gore Hall", "plumbing", 0, weights) == 101


# ============================================================
# TEST: RANKING AND TIE-BREAKS
# ============================================================

def test_rank_prefers_higher_score():
    weights = ScoringWeights()
    t1 = _tech("T1", buildings=["Gore Hall"])
    t2 = _tech("T2")
    ranked = rank_technicians([t2, t1], "Gore Hall", "hvac", {}, weights)
    assert [r.technician.name for r in ranked] == ["T1", "T2"]
    assert [r.score for r in ranked] == [26, 21]


def test_rank_ties_keep_evaluation_order():
    weights = ScoringWeights()
    first, second = _tech("A"), _tech("B")
    ranked = rank_technicians([first, second], "Gore Hall", "hvac", {}, weights)
    assert ranked[0].technician is first
    ranked = rank_technicians([second, first], "Gore Hall", "hvac", {}, weights)
    assert ranked[0].technician is second


def test_pick_least_loaded_first_minimum_wins(db, make_technician):
    a = make_technician("Alice")
    b = make_technician("Bob")
    c = make_technician("Cara")
    assert pick_least_loaded([a, b, c], {a.id: 2, b.id: 1, c.id: 1}) is b
    assert pick_least_loaded([a, b, c], {}) is a
    assert pick_least_loaded([], {}) is None


# ============================================================
# TEST: QUERIES
# ============================================================

def test_available_technicians_ordered_and_filtered(db, make_technician):
    make_technician("Zed", trade="plumbing")
    make_technician("Amy", trade="hvac")
    make_technician("Off", trade="hvac", is_available=False)
    names = [t.name for t in available_technicians(db)]
    assert names == ["Amy", "Zed"]
    assert [t.name for t in available_technicians(db, trade="plumbing")] == ["Zed"]


def test_available_technicians_excludes_ids(db, make_technician):
    amy = make_technician("Amy")
    make_technician("Bob")
    assert [t.name for t in available_technicians(db, exclude_ids=[amy.id])] == ["Bob"]


def test_active_assignment_counts_ignore_terminal(db, make_technician, make_report, make_assignment):
    tech = make_technician("Amy")
    idle = make_technician("Bob")
    make_assignment(make_report(room="1"), tech, status="pending")
    make_assignment(make_report(room="2"), tech, status="in_progress")
    make_assignment(make_report(room="3"), tech, status="completed")
    make_assignment(make_report(room="4"), tech, status="cancelled")
    counts = active_assignment_counts(db, [tech.id, idle.id])
    assert counts.get(tech.id) == 2
    assert counts.get(idle.id, 0) == 0
