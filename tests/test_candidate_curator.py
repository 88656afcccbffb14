"""
🧪 Tests de prioridad y deduplicación de candidatos
"""
from services.candidate_curator import (
    CandidateCurator, is_duplicate_candidate, normalize_name, priority_score, rank_candidates
)
from settings import Settings
from utils.planner_events import CANDIDATE_DEDUPED, EventRecorder


# =========================================================================
# PRIORIDAD
# =========================================================================

def test_must_see_outranks_popularity(make_candidate):
    popular = make_candidate("popular", rating=4.9, review_count=80000)
    must_see = make_candidate("must", must_see=True)
    assert priority_score(must_see) > priority_score(popular)


def test_rank_by_rating_and_reviews_then_id(make_candidate):
    candidates = [
        make_candidate("b"),
        make_candidate("a"),
        make_candidate("niche", rating=4.9, review_count=3),
        make_candidate("famous", rating=4.6, review_count=50000),
        make_candidate("star", must_see=True),
    ]
    assert [c.id for c in rank_candidates(candidates)] == ["star", "famous", "niche", "a", "b"]


def test_unverified_data_ranks_lower(make_candidate):
    verified = make_candidate("v", rating=4.0)
    generated = make_candidate("g", rating=4.0, data_reliability="generated")
    assert [c.id for c in rank_candidates([generated, verified])] == ["v", "g"]


# =========================================================================
# DUPLICADOS
# =========================================================================

def test_normalize_name_strips_accents_and_punctuation():
    assert normalize_name("  Cathédrale Notre-Dame (Paris) ") == "cathedrale notre dame paris"


def test_same_place_from_two_sources(make_candidate):
    a = make_candidate("a", name="Cathédrale Notre-Dame de Paris")
    b = make_candidate("b", 0.1, 0.1, name="Notre Dame Cathedrale, Paris")
    assert is_duplicate_candidate(b, a)


def test_contained_name_close_by(make_candidate):
    a = make_candidate("a", name="Sainte-Chapelle")
    b = make_candidate("b", 0.05, 0, name="La Sainte Chapelle de Paris")
    assert is_duplicate_candidate(b, a)


def test_misspelled_name_close_by(make_candidate):
    a = make_candidate("a", name="Tour Eiffel Paris")
    b = make_candidate("b", 0.1, 0, name="Tour Eifel Paris")
    assert is_duplicate_candidate(b, a)


def test_similar_names_far_apart_are_distinct(make_candidate):
    a = make_candidate("a", name="Cathédrale Notre-Dame de Paris")
    b = make_candidate("b", 1.0, 0, name="Notre Dame Cathedrale, Paris")
    assert not is_duplicate_candidate(b, a)


def test_identical_names_within_a_few_km(make_candidate):
    a = make_candidate("a", name="Marché aux Puces")
    assert is_duplicate_candidate(make_candidate("b", 2.0, 0, name="Marche aux puces"), a)
    assert not is_duplicate_candidate(make_candidate("c", 6.0, 0, name="Marche aux puces"), a)


def test_identical_names_without_coordinates(make_candidate):
    a = make_candidate("a", name="Jardin secret", lat=None, lng=None)
    b = make_candidate("b", name="Jardin Secret")
    assert is_duplicate_candidate(b, a)


def test_numbers_keep_places_apart(make_candidate):
    a = make_candidate("a", name="Aeropuerto Terminal 1")
    b = make_candidate("b", 0.1, 0, name="Aeropuerto Terminal 2")
    assert not is_duplicate_candidate(b, a)


def test_distinct_neighbours_are_kept(make_candidate):
    a = make_candidate("a", name="Teatro alla Scala")
    b = make_candidate("b", 0.2, 0.1, name="Galleria Vittorio Emanuele II")
    assert not is_duplicate_candidate(b, a)


# =========================================================================
# CURADO
# =========================================================================

def test_curate_keeps_best_ranked_copy(make_candidate):
    recorder = EventRecorder()
    weak = make_candidate("weak", name="Musée d'Orsay", rating=3.5)
    strong = make_candidate("strong", 0.05, 0, name="Musee d Orsay", rating=4.8, review_count=90000)
    other = make_candidate("other", 1.0, 0, name="Jardin des Tuileries")

    result = CandidateCurator(events=recorder).curate([weak, other, strong])

    assert [c.id for c in result.candidates] == ["strong", "other"]
    assert [c.id for c in result.duplicates] == ["weak"]
    event = recorder.named(CANDIDATE_DEDUPED)[0]
    assert (event.payload["candidate_id"], event.payload["duplicate_of"]) == ("weak", "strong")


def test_must_see_is_never_discarded(make_candidate):
    first = make_candidate("first", name="Louvre", must_see=True)
    second = make_candidate("second", 0.05, 0, name="Louvre", must_see=True)
    result = CandidateCurator().curate([first, second])
    assert sorted(c.id for c in result.candidates) == ["first", "second"]
    assert result.duplicates == []


def test_extra_pool_is_deduped_against_candidates(make_candidate):
    kept = make_candidate("louvre", name="Louvre")
    pool = [make_candidate("louvre-2", 0.1, 0, name="Louvre"), make_candidate("orsay", 1.0, 0, name="Orsay")]

    result = CandidateCurator().curate([kept], pool)

    assert [c.id for c in result.candidates] == ["louvre"]
    assert [c.id for c in result.extra_pool] == ["orsay"]
    assert [c.id for c in result.duplicates] == ["louvre-2"]


def test_dedup_can_be_disabled(make_candidate):
    a = make_candidate("a", name="Louvre")
    b = make_candidate("b", 0.1, 0, name="Louvre")
    result = CandidateCurator(Settings(ENABLE_DEDUP=False)).curate([b, a])
    assert [c.id for c in result.candidates] == ["a", "b"]
    assert result.duplicates == []
