"""
Tests for the record store services.
"""

from datetime import date, timedelta

import pytest

from raceday import services
from raceday.errors import ConflictError, NotFoundError
from raceday.schemas import ParticipantCreate, ParticipantUpdate, RaceCreate
from raceday.utils import as_utc

from .conftest import START, at


class TestRaces:
    def test_create_requires_name(self, session):
        with pytest.raises(ValueError, match="Race name required"):
            services.create_race(session, RaceCreate(name="  ", race_date=date(2024, 6, 1)))

    def test_get_missing_race(self, session):
        with pytest.raises(NotFoundError):
            services.get_race(session, 999)

    def test_start_sets_time_once(self, session, race):
        started = services.start_race(session, race.id, now=START)
        assert as_utc(started.start_time) == START

        with pytest.raises(ConflictError, match="already been started"):
            services.start_race(session, race.id, now=START + timedelta(minutes=1))
        assert as_utc(services.get_race(session, race.id).start_time) == START


class TestEntries:
    def test_bib_unique_within_race(self, session, race, register):
        register(race, 12)
        with pytest.raises(ConflictError, match="Bib number 12 is already assigned"):
            register(race, 12)

    def test_same_bib_allowed_in_other_race(self, session, race, register):
        other = services.create_race(session, RaceCreate(name="Harbour 5K", race_date=race.race_date))
        register(race, 12)
        assert register(other, 12).bib_number == 12

    def test_participant_entered_once(self, session, race):
        p = services.create_participant(session, ParticipantCreate(first_name="Ana"))
        services.add_participant_to_race(session, race.id, p.id, 1)
        with pytest.raises(ConflictError, match="already in this race"):
            services.add_participant_to_race(session, race.id, p.id, 2)

    def test_update_bib_conflict(self, session, race, register):
        register(race, 1)
        rp = register(race, 2)
        with pytest.raises(ConflictError):
            services.update_bib_number(session, race.id, rp.id, 1)
        assert services.update_bib_number(session, race.id, rp.id, 3).bib_number == 3

    def test_assign_bib_numbers_fills_gaps(self, session, race, register):
        register(race, 2)
        a = register(race, None)
        b = register(race, None)
        changed = services.assign_bib_numbers(session, race.id)
        assert [(rp.id, rp.bib_number) for rp in changed] == [(a.id, 1), (b.id, 3)]

    def test_participants_ordered_by_bib(self, session, race, register):
        register(race, None)
        register(race, 9)
        register(race, 3)
        views = services.get_race_participants(session, race.id)
        assert [v.bib_number for v in views] == [3, 9, None]

    def test_update_participant_partial(self, session):
        p = services.create_participant(session, ParticipantCreate(first_name="Ana", gender="Female"))
        services.update_participant(session, p.id, ParticipantUpdate(last_name="Silva"))
        p = services.get_participant(session, p.id)
        assert p.full_name == "Ana Silva"
        assert p.gender == "Female"

    def test_remove_participant_from_race(self, session, race, register):
        rp = register(race, 4)
        services.remove_participant_from_race(session, race.id, rp.id)
        assert services.get_race_participants(session, race.id) == []
        with pytest.raises(NotFoundError):
            services.remove_participant_from_race(session, race.id, rp.id)


class TestFinishTimes:
    def test_rejected_before_start(self, session, race, register):
        register(race, 5)
        with pytest.raises(ConflictError, match="not been started"):
            services.record_finish_time(session, race.id, 5, at(8, 20))

    def test_unknown_bib(self, session, started_race):
        with pytest.raises(NotFoundError, match="Bib number 77 not found in this race"):
            services.record_finish_time(session, started_race.id, 77, at(8, 20))

    def test_record_is_at_most_once(self, session, started_race, register):
        register(started_race, 5)
        ft = services.record_finish_time(session, started_race.id, 5, at(8, 22, 15))
        with pytest.raises(ConflictError, match="Bib number 5 has already finished"):
            services.record_finish_time(session, started_race.id, 5, at(8, 30))
        assert as_utc(services.get_finish_time(session, ft.id).finish_time) == at(8, 22, 15)

    def test_adjust_keeps_original(self, session, started_race, register):
        register(started_race, 5)
        ft = services.record_finish_time(session, started_race.id, 5, at(8, 22, 15))
        services.update_finish_time(session, ft.id, at(8, 22, 0))

        [result] = services.get_placements(session, started_race.id)
        assert result.finish_time == at(8, 22, 0)
        assert result.original_finish_time == at(8, 22, 15)
        assert result.elapsed_ms == 1_320_000

    def test_delete_reopens_bib(self, session, started_race, register):
        register(started_race, 5)
        ft = services.record_finish_time(session, started_race.id, 5, at(8, 22))
        services.delete_finish_time(session, ft.id)
        assert services.get_placements(session, started_race.id) == []

        again = services.record_finish_time(session, started_race.id, 5, at(8, 25))
        assert as_utc(again.finish_time) == at(8, 25)

    def test_missing_finish_time(self, session):
        with pytest.raises(NotFoundError):
            services.update_finish_time(session, 404, at(8, 0))
        with pytest.raises(NotFoundError):
            services.delete_finish_time(session, 404)

    def test_multiple_share_timestamp_and_settle_individually(self, session, started_race, register):
        register(started_race, 12)
        register(started_race, 13)
        services.record_finish_time(session, started_race.id, 12, at(8, 30))

        outcomes = services.record_multiple_finish_times(session, started_race.id, [12, 13, 99], at(8, 31))
        assert [o.ok for o in outcomes] == [False, True, False]
        assert outcomes[0].error == "Bib number 12 has already finished"
        assert outcomes[2].error == "Bib number 99 not found in this race"
        assert as_utc(services.get_finish_time(session, outcomes[1].finish_time_id).finish_time) == at(8, 31)


class TestResults:
    def test_unstarted_race_has_no_results(self, session, race, register):
        register(race, 1)
        assert services.get_placements(session, race.id) == []
        assert services.get_categorized_results(session, race.id, "gender") == []

    def test_placements_use_race_date_for_age(self, session, started_race, register):
        register(started_race, 5, gender="Male", date_of_birth=date(2006, 6, 1))
        services.record_finish_time(session, started_race.id, 5, at(8, 40))
        [result] = services.get_placements(session, started_race.id)
        assert result.age_group == "18-29"
        assert result.overall_place == 1
        assert result.gender_place == 1

    def test_equal_times_ranked_by_bib(self, session, started_race, register):
        register(started_race, 8)
        register(started_race, 3)
        services.record_multiple_finish_times(session, started_race.id, [8, 3], at(8, 45))
        results = services.get_placements(session, started_race.id)
        assert [(r.bib_number, r.overall_place) for r in results] == [(3, 1), (8, 2)]

    def test_categorized_with_query_and_age_scheme(self, session, started_race, register):
        register(started_race, 1, first_name="Ana", gender="Female", date_of_birth=date(2010, 1, 1))
        register(started_race, 2, first_name="Ben", gender="Male", date_of_birth=date(1990, 1, 1))
        services.record_multiple_finish_times(session, started_race.id, [1, 2], at(8, 50))

        groups = services.get_categorized_results(session, started_race.id, "age", age_scheme="display")
        assert [g.label for g in groups] == ["Youth (Under 18)", "Masters (30-39)"]

        groups = services.get_categorized_results(session, started_race.id, "overall", query="ben")
        assert [r.bib_number for r in groups[0].results] == [2]

    def test_unknown_age_scheme(self, session, started_race):
        with pytest.raises(ValueError, match="Unknown age scheme"):
            services.get_categorized_results(session, started_race.id, "age", age_scheme="decades")

    def test_stats_and_recent(self, session, started_race, register):
        for bib in (1, 2, 3):
            register(started_race, bib)
        services.record_finish_time(session, started_race.id, 1, at(8, 20))
        services.record_finish_time(session, started_race.id, 2, at(8, 25))

        stats = services.race_stats(session, started_race.id)
        assert (stats.total, stats.finished, stats.still_racing) == (3, 2, 1)
        assert [r.bib_number for r in services.recent_finishes(session, started_race.id, limit=1)] == [2]
