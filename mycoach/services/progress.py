"""Dashboard statistics derived from the stored document."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from ..models import AppState, DailyLog, Habit, UserProfile
from ..utils.dates import previous_day


def calculate_streak(dates: Iterable[date], today: date) -> int:
    """Length of the run of consecutive days ending today.

    A run that ended yesterday still counts, so the streak survives until the
    user has had the whole of today to check in.
    """

    seen = set(dates)
    if today in seen:
        cursor = today
    elif previous_day(today) in seen:
        cursor = previous_day(today)
    else:
        return 0

    streak = 0
    while cursor in seen:
        streak += 1
        cursor = previous_day(cursor)
    return streak


def app_streak(logs: Iterable[DailyLog], today: date) -> int:
    """Streak over days with at least one completed task.

    Deliberately stricter than the previous dashboard, which counted any day
    that had a log: a task ticked and then unticked no longer keeps the
    streak alive.
    """
    return calculate_streak((log.date for log in logs if log.completed_tasks), today)


def habit_streak(habit: Habit, today: date) -> int:
    return calculate_streak(habit.dates_completed, today)


def total_check_ins(logs: Iterable[DailyLog]) -> int:
    return sum(len(log.completed_tasks) for log in logs)


def weight_difference(profile: UserProfile) -> Optional[float]:
    if not profile.current_weight or not profile.target_weight:
        return None
    return abs(profile.target_weight - profile.current_weight)


def dashboard_summary(state: AppState, today: date) -> Dict[str, Any]:
    todays_log = state.log_for(today)
    completed = list(todays_log.completed_tasks) if todays_log else []
    history = state.profile.weight_history

    habits: List[Dict[str, Any]] = []
    for habit in state.habits:
        habits.append(
            {
                'id': habit.id,
                'title': habit.title,
                'streak': habit_streak(habit, today),
                'doneToday': today in habit.dates_completed,
            }
        )

    return {
        'today': today.isoformat(),
        'plan': [
            {'task': task, 'completed': task in completed}
            for task in state.current_plan
        ],
        'completedToday': completed,
        'appStreak': app_streak(state.logs, today),
        'totalCheckIns': total_check_ins(state.logs),
        'habits': habits,
        'lastWeightUpdate': history[-1].date.isoformat() if history else None,
        'weightDifference': weight_difference(state.profile),
        'awaitingPlan': not state.current_plan,
    }
