"""
Tests for the placement engine.
"""

from datetime import date, datetime, timedelta, timezone

from raceday.placements import (
    FinishTimeView,
    ParticipantView,
    RaceParticipantView,
    compute_placements,
    effective_finish_time,
    find_anomalies,
)

START = datetime(2024, 6, 1, 8, 0, 0, tzinfo=timezone.utc)


def entry(rp_id, bib, *, gender=None, dob=None, finish=None, adjusted=None):
    ft = FinishTimeView(id=rp_id * 10, finish_time=finish, adjusted_time=adjusted) if finish else None
    return RaceParticipantView(
        id=rp_id,
        bib_number=bib,
        participant=ParticipantView(id=rp_id, first_name="Runner", last_name=str(bib), gender=gender, date_of_birth=dob),
        finish_time=ft,
    )


def after(minutes, seconds=0):
    return START + timedelta(minutes=minutes, seconds=seconds)


class TestComputePlacements:
    def test_two_finishers_with_gender_and_age_places(self):
        """Bib 7 crosses first; bib 5 is second overall and first male."""
        entries = [
            entry(1, 5, gender="Male", dob=date(1990, 1, 1), finish=after(22, 15)),
            entry(2, 7, gender="Female", dob=date(1992, 3, 4), finish=after(20)),
        ]
        results = compute_placements(entries, START)
        by_bib = {r.bib_number: r for r in results}

        assert by_bib[5].elapsed_ms == 1_335_000
        assert by_bib[5].elapsed_str == "0:22:15"
        assert by_bib[5].overall_place == 2
        assert by_bib[5].gender_place == 1
        assert by_bib[5].age_group == "30-39"
        assert by_bib[7].overall_place == 1
        assert by_bib[7].gender_place == 1

    def test_non_finishers_are_left_out(self):
        entries = [entry(1, 1, finish=after(30)), entry(2, 2)]
        results = compute_placements(entries, START)
        assert [r.bib_number for r in results] == [1]

    def test_overall_places_are_contiguous(self):
        entries = [entry(i, i, finish=after(40 - i)) for i in range(1, 8)]
        results = compute_placements(entries, START)
        assert [r.overall_place for r in results] == list(range(1, 8))
        assert [r.elapsed_ms for r in results] == sorted(r.elapsed_ms for r in results)

    def test_adjusted_time_drives_ranking(self):
        entries = [
            entry(1, 1, finish=after(20), adjusted=after(25)),
            entry(2, 2, finish=after(22)),
        ]
        results = compute_placements(entries, START)
        assert [r.bib_number for r in results] == [2, 1]
        corrected = results[1]
        assert corrected.is_adjusted
        assert corrected.finish_time == after(25)
        assert corrected.original_finish_time == after(20)

    def test_gender_partitions_are_independent(self):
        entries = [
            entry(1, 1, gender="Female", finish=after(20)),
            entry(2, 2, gender="Male", finish=after(21)),
            entry(3, 3, gender="Female", finish=after(22)),
            entry(4, 4, gender="Other", finish=after(23)),
            entry(5, 5, gender="Male", finish=after(24)),
        ]
        places = {r.bib_number: r.gender_place for r in compute_placements(entries, START)}
        assert places == {1: 1, 2: 1, 3: 2, 4: 1, 5: 2}

    def test_unrecognized_or_missing_gender_has_no_gender_place(self):
        entries = [
            entry(1, 1, gender=None, finish=after(20)),
            entry(2, 2, gender="female", finish=after(21)),
            entry(3, 3, gender="Female", finish=after(22)),
        ]
        places = {r.bib_number: r.gender_place for r in compute_placements(entries, START)}
        assert places == {1: None, 2: None, 3: 1}

    def test_age_group_places_use_race_date(self):
        entries = [
            entry(1, 1, dob=date(2006, 6, 1), finish=after(20)),
            entry(2, 2, dob=date(2006, 6, 2), finish=after(21)),
            entry(3, 3, dob=date(2000, 1, 1), finish=after(22)),
            entry(4, 4, dob=None, finish=after(23)),
        ]
        results = {r.bib_number: r for r in compute_placements(entries, START, race_date=date(2024, 6, 1))}
        assert results[1].age_group == "18-29"
        assert results[1].age_group_place == 1
        assert results[2].age_group == "13-17"
        assert results[2].age_group_place == 1
        assert results[3].age_group_place == 2
        assert results[4].age_group is None
        assert results[4].age_group_place is None

    def test_ties_keep_input_order_with_distinct_places(self):
        entries = [entry(1, 3, finish=after(20)), entry(2, 9, finish=after(20)), entry(3, 4, finish=after(19))]
        results = compute_placements(entries, START)
        assert [(r.bib_number, r.overall_place) for r in results] == [(4, 1), (3, 2), (9, 3)]

    def test_finish_before_start_is_flagged(self, caplog):
        entries = [entry(1, 1, finish=START - timedelta(seconds=30)), entry(2, 2, finish=after(20))]
        results = compute_placements(entries, START)

        early = results[0]
        assert early.bib_number == 1
        assert early.elapsed_ms == -30_000
        assert early.is_anomaly
        assert early.elapsed_str == "-0:00:30"
        assert early.notes == ["Finish recorded before race start"]
        assert [r.bib_number for r in find_anomalies(results)] == [1]
        assert "Negative elapsed time for bib 1" in caplog.text

    def test_naive_and_aware_timestamps_mix(self):
        naive = (START + timedelta(minutes=5)).replace(tzinfo=None)
        results = compute_placements([entry(1, 1, finish=naive)], START)
        assert results[0].elapsed_ms == 300_000

    def test_empty_input(self):
        assert compute_placements([], START) == []


def test_effective_finish_time_prefers_adjustment():
    ft = FinishTimeView(id=1, finish_time=after(10))
    assert effective_finish_time(ft) == after(10)
    ft = FinishTimeView(id=1, finish_time=after(10), adjusted_time=after(11))
    assert effective_finish_time(ft) == after(11)
