from services.day_advisor import (
    DAY_TRIP_THEME, DEFAULT_THEME, DayAdvisor, DayHint, DeterministicAdvisor, resolve_day_plans
)
from utils.planner_events import ADVISOR_FALLBACK, EventRecorder


class FailingAdvisor(DayAdvisor):
    def propose_order(self, cluster):
        raise RuntimeError("timeout del modelo")


class SilentAdvisor(DayAdvisor):
    def propose_order(self, cluster):
        return None


class ReversingAdvisor(DayAdvisor):
    def propose_order(self, cluster):
        return DayHint(
            activity_order=list(reversed(cluster.candidate_ids)) + ["intruso", cluster.candidate_ids[0]],
            theme="Tema del asesor",
            suggested_start="25:00",
        )


def _clusters(make_candidate, make_cluster):
    return [
        make_cluster(1, [make_candidate("a", category="museum"), make_candidate("b", 0.2, 0, category="park"),
                         make_candidate("c", 0.4, 0, category="art_gallery")]),
        make_cluster(2, []),
    ]


def test_deterministic_theme_and_start(make_candidate, make_cluster):
    clusters = _clusters(make_candidate, make_cluster)
    advisor = DeterministicAdvisor()
    first = advisor.propose_order(clusters[0])
    assert first.theme == "Cultura y museos"
    assert first.suggested_start == "10:00"
    assert first.activity_order == ["a", "b", "c"]
    empty = advisor.propose_order(clusters[1])
    assert empty.theme == DEFAULT_THEME
    assert empty.suggested_start == "09:00"


def test_day_trip_theme(make_candidate, make_cluster):
    cluster = make_cluster(3, [make_candidate("far", 40, 0)], is_day_trip=True)
    assert DeterministicAdvisor().theme_for(cluster) == DAY_TRIP_THEME


def test_plans_freeze_clusters(make_candidate, make_cluster):
    clusters = _clusters(make_candidate, make_cluster)
    plans = resolve_day_plans(clusters)
    assert all(c.frozen for c in clusters)
    assert [c.id for c in plans[0].ordered] == ["a", "b", "c"]
    assert not plans[0].advisor_used


def test_failing_advisor_falls_back_to_same_plan(make_candidate, make_cluster):
    baseline = resolve_day_plans(_clusters(make_candidate, make_cluster))
    for advisor in (FailingAdvisor(), SilentAdvisor()):
        recorder = EventRecorder()
        plans = resolve_day_plans(_clusters(make_candidate, make_cluster), advisor, recorder)
        assert [[c.id for c in p.ordered] for p in plans] == [[c.id for c in p.ordered] for p in baseline]
        assert [(p.theme, p.suggested_start) for p in plans] == [(p.theme, p.suggested_start) for p in baseline]
        # el día vacío no consulta al asesor
        assert len(recorder.named(ADVISOR_FALLBACK)) == 1


def test_advisor_order_is_sanitized(make_candidate, make_cluster):
    plans = resolve_day_plans(_clusters(make_candidate, make_cluster), ReversingAdvisor())
    plan = plans[0]
    assert plan.advisor_used
    assert [c.id for c in plan.ordered] == ["c", "b", "a"]
    assert plan.theme == "Tema del asesor"
    # hora inválida → la determinista
    assert plan.suggested_start == "10:00"
