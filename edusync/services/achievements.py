"""
Achievement Service — threshold checks run after a learner activity.

Behavioral Contract:
- Stateless per call: reads counts from the store, compares them to fixed
  thresholds, inserts awards, returns only the awards this call inserted
- Idempotency: "already has it" pre-check plus the store's unique
  (user_id, achievement_id) constraint. A repeated check returns [].
- XP from new awards is added to the profile; level = xp // 1000 + 1
- Every new award is announced as an AchievementUnlocked event when an
  announcer is configured
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

import structlog
from croniter import croniter

from edusync.errors import ValidationError
from edusync.models.achievement import Achievement, ActivityType
from edusync.models.broadcast import AchievementUnlocked
from edusync.store.achievements import AchievementStore
from edusync.store.catalog import CatalogStore

logger = structlog.get_logger(__name__)

PERFECT_SCORE = "first-perfect-score"
QUIZ_MASTER = "quiz-master"
FIRST_COURSE = "first-course"
COURSE_COLLECTOR = "course-collector"
EARLY_BIRD = "early-bird"

QUIZ_MASTER_THRESHOLD = 80
QUIZ_MASTER_COUNT = 5
COURSE_COLLECTOR_COUNT = 10

# Local hours 00:00-07:59
EARLY_BIRD_WINDOW = "* 0-7 * * *"

Announcer = Callable[[AchievementUnlocked], None]


class AchievementService:
    def __init__(
        self,
        achievements: AchievementStore,
        catalog: CatalogStore,
        announcer: Optional[Announcer] = None,
    ):
        self.achievements = achievements
        self.catalog = catalog
        self.announcer = announcer
        self._checks: Dict[ActivityType, Callable] = {
            ActivityType.QUIZ_COMPLETED: self._check_quiz_completed,
            ActivityType.COURSE_COMPLETED: self._check_course_completed,
            ActivityType.STREAK_CHECK: self._check_streak,
        }

    def check(
        self,
        user_id: str,
        activity: str,
        data: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> List[Achievement]:
        """Run the checks for one activity and return newly awarded achievements."""
        try:
            activity_type = ActivityType(activity)
        except ValueError:
            raise ValidationError(f"Unknown activity type: {activity}")

        data = data or {}
        now = now or datetime.now()
        existing = self.achievements.existing_ids(user_id)
        logger.info("achievements_check", user_id=user_id, activity=activity_type.value)

        candidates = self._checks[activity_type](user_id, data, existing, now)

        awarded: List[Achievement] = []
        for achievement_id in candidates:
            achievement = self.achievements.get(achievement_id)
            if achievement is None:
                logger.warning("achievement_missing_from_catalogue", achievement_id=achievement_id)
                continue
            if self.achievements.award(user_id, achievement.id):
                awarded.append(achievement)
                logger.info(
                    "achievement_awarded", user_id=user_id, achievement_id=achievement.id
                )

        total_xp = sum(a.xp_reward for a in awarded)
        if total_xp > 0:
            xp, level = self.catalog.add_xp(user_id, total_xp)
            logger.info("xp_updated", user_id=user_id, xp=xp, level=level)

        if self.announcer is not None:
            for achievement in awarded:
                self.announcer(AchievementUnlocked(
                    achievement_id=achievement.id,
                    user_id=user_id,
                    name=achievement.name,
                    xp_reward=achievement.xp_reward,
                ))

        return awarded

    # --- Threshold checks ---

    def _check_quiz_completed(
        self, user_id: str, data: dict, existing: Set[str], now: datetime
    ) -> List[str]:
        percentage = data.get("percentage")
        if percentage is None:
            raise ValidationError("percentage is required for quiz_completed")
        try:
            percentage = float(percentage)
        except (TypeError, ValueError):
            raise ValidationError("percentage must be a number")

        candidates = []
        if percentage == 100 and PERFECT_SCORE not in existing:
            candidates.append(PERFECT_SCORE)

        enrollment_id = data.get("enrollment_id")
        if (
            percentage >= QUIZ_MASTER_THRESHOLD
            and enrollment_id
            and QUIZ_MASTER not in existing
        ):
            count = self.catalog.count_quiz_results_at_least(
                enrollment_id, QUIZ_MASTER_THRESHOLD
            )
            if count >= QUIZ_MASTER_COUNT:
                candidates.append(QUIZ_MASTER)
        return candidates

    def _check_course_completed(
        self, user_id: str, data: dict, existing: Set[str], now: datetime
    ) -> List[str]:
        completed = self.catalog.count_completed_enrollments(user_id)
        candidates = []
        if completed == 1 and FIRST_COURSE not in existing:
            candidates.append(FIRST_COURSE)
        if completed >= COURSE_COLLECTOR_COUNT and COURSE_COLLECTOR not in existing:
            candidates.append(COURSE_COLLECTOR)
        return candidates

    def _check_streak(
        self, user_id: str, data: dict, existing: Set[str], now: datetime
    ) -> List[str]:
        if EARLY_BIRD not in existing and croniter.match(
            EARLY_BIRD_WINDOW, now.replace(second=0, microsecond=0)
        ):
            return [EARLY_BIRD]
        return []
