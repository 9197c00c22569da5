"""Tests for the achievement threshold checks."""

from datetime import datetime

import pytest

from edusync.errors import ValidationError
from edusync.services.achievements import (
    COURSE_COLLECTOR,
    EARLY_BIRD,
    FIRST_COURSE,
    PERFECT_SCORE,
    QUIZ_MASTER,
    AchievementService,
)
from edusync.store.achievements import AchievementStore
from edusync.store.catalog import CatalogStore
from edusync.store.database import Database


class TestAchievementService:
    def setup_method(self):
        self.db = Database()
        self.catalog = CatalogStore(self.db)
        self.store = AchievementStore(self.db)
        self.announced = []
        self.service = AchievementService(self.store, self.catalog, announcer=self.announced.append)

    def teardown_method(self):
        self.db.close()

    def _complete_courses(self, user_id: str, count: int) -> None:
        for i in range(count):
            course = self.catalog.add_course(f"Course {i}")
            enrollment_id = self.catalog.enroll(user_id, course["id"])
            self.catalog.complete_enrollment(enrollment_id)

    # --- quiz_completed ---

    def test_perfect_score_awarded_once(self):
        first = self.service.check("u1", "quiz_completed", {"percentage": 100})
        second = self.service.check("u1", "quiz_completed", {"percentage": 100})

        assert [a.id for a in first] == [PERFECT_SCORE]
        assert second == []
        assert self.store.existing_ids("u1") == {PERFECT_SCORE}

    def test_perfect_score_adds_xp(self):
        self.service.check("u1", "quiz_completed", {"percentage": 100})
        profile = self.catalog.get_profile("u1")
        assert profile["xp"] == 100
        assert profile["level"] == 1

    def test_below_perfect_awards_nothing(self):
        assert self.service.check("u1", "quiz_completed", {"percentage": 99.5}) == []

    def test_percentage_is_required(self):
        with pytest.raises(ValidationError):
            self.service.check("u1", "quiz_completed", {})

    def test_percentage_must_be_numeric(self):
        with pytest.raises(ValidationError):
            self.service.check("u1", "quiz_completed", {"percentage": "lots"})

    def test_quiz_master_after_five_high_scores(self):
        course = self.catalog.add_course("Stats")
        enrollment_id = self.catalog.enroll("u1", course["id"])
        for _ in range(4):
            self.catalog.record_quiz_result(enrollment_id, 85)
        data = {"percentage": 90, "enrollment_id": enrollment_id}

        assert self.service.check("u1", "quiz_completed", data) == []

        self.catalog.record_quiz_result(enrollment_id, 90)
        awarded = self.service.check("u1", "quiz_completed", data)
        assert [a.id for a in awarded] == [QUIZ_MASTER]

    # --- course_completed ---

    def test_first_course(self):
        self._complete_courses("u1", 1)
        awarded = self.service.check("u1", "course_completed")
        assert [a.id for a in awarded] == [FIRST_COURSE]

    def test_course_collector_at_ten(self):
        self._complete_courses("u1", 10)
        awarded = self.service.check("u1", "course_completed")
        assert [a.id for a in awarded] == [COURSE_COLLECTOR]

    def test_no_courses_no_award(self):
        assert self.service.check("u1", "course_completed") == []

    # --- streak_check ---

    def test_early_bird_inside_window(self):
        awarded = self.service.check("u1", "streak_check", now=datetime(2024, 6, 3, 6, 45, 30))
        assert [a.id for a in awarded] == [EARLY_BIRD]

    def test_early_bird_outside_window(self):
        assert self.service.check("u1", "streak_check", now=datetime(2024, 6, 3, 8, 0)) == []

    # --- general ---

    def test_unknown_activity(self):
        with pytest.raises(ValidationError):
            self.service.check("u1", "lesson_viewed")

    def test_awards_are_announced(self):
        self.service.check("u1", "quiz_completed", {"percentage": 100})
        self.service.check("u1", "quiz_completed", {"percentage": 100})

        assert len(self.announced) == 1
        event = self.announced[0]
        assert event.achievement_id == PERFECT_SCORE
        assert event.user_id == "u1"
        assert event.xp_reward == 100

    def test_award_lost_to_concurrent_request_is_not_returned(self, monkeypatch):
        # Another request inserted the row after this call read existing ids
        self.store.award("u1", PERFECT_SCORE)
        monkeypatch.setattr(self.store, "existing_ids", lambda user_id: set())

        assert self.service.check("u1", "quiz_completed", {"percentage": 100}) == []
        assert self.announced == []
