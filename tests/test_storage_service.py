from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from mycoach.models import AppState, DailyLog, Habit, Message, Sender, UserProfile, WeightEntry
from mycoach.services.storage_backends import RedisStateSlot
from mycoach.services.storage_service import StorageService, StorageUnavailableError

TODAY = date(2026, 10, 17)


def test_load_returns_initial_document_when_slot_is_empty(storage):
    state = storage.load()

    assert state == AppState.initial(TODAY)
    assert state.profile.coach_name == 'YourAICoach'
    assert state.profile.age == 30
    assert state.profile.weight_history == []
    assert state.last_plan_update == TODAY


def test_save_then_load_round_trips_every_field(storage):
    state = AppState(
        profile=UserProfile(
            name='Jordan',
            age=41,
            gender='nonbinary',
            goal='Run a half marathon',
            coach_name='Blaze',
            current_weight=180,
            target_weight=170,
            weight_history=[WeightEntry(date=date(2026, 10, 1), weight=182.5)],
            onboarding_completed=True,
        ),
        messages=[
            Message(
                id='m1',
                text='Morning!',
                sender=Sender.USER,
                timestamp=datetime(2026, 10, 17, 8, 0, tzinfo=timezone.utc),
                image='data:image/png;base64,aGVsbG8=',
            ),
            Message(id='m2', text='Let us go.', sender=Sender.BOT, timestamp=datetime(2026, 10, 17, 8, 1, tzinfo=timezone.utc)),
        ],
        logs=[DailyLog(date=date(2026, 10, 16), completed_tasks=['Drink 3L Water'])],
        current_plan=['Drink 3L Water', '10 Minute Walk'],
        habits=[
            Habit(
                id='h1',
                title='Meditate',
                dates_completed=[date(2026, 10, 15), date(2026, 10, 16)],
                created_at=datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc),
            )
        ],
        last_plan_update=date(2026, 10, 16),
    )

    storage.save(state)

    assert storage.load() == state


def test_document_uses_camel_case_keys_on_disk(storage, slot):
    storage.update_profile({'coach_name': 'Blaze'})

    document = json.loads(slot.path.read_text(encoding='utf-8'))
    assert document['profile']['coachName'] == 'Blaze'
    assert document['lastPlanUpdate'] == '2026-10-17'
    assert set(document) == {'profile', 'messages', 'logs', 'currentPlan', 'habits', 'lastPlanUpdate'}


def test_corrupt_document_falls_back_to_defaults(storage, slot, caplog):
    slot.write('{"profile": {"name": "Jordan"')

    with caplog.at_level(logging.ERROR):
        state = storage.load()

    assert state == AppState.initial(TODAY)
    assert 'Failed to load state' in caplog.text


def test_non_object_document_falls_back_to_defaults(storage, slot):
    slot.write('[1, 2, 3]')

    assert storage.load() == AppState.initial(TODAY)


def test_undecodable_bytes_fall_back_to_defaults(storage, slot):
    slot.path.write_bytes(b'{"messages": [\xff\xfe]}')

    assert storage.load() == AppState.initial(TODAY)


def test_oversized_integer_falls_back_to_defaults(storage, slot):
    slot.write('{"profile": {"age": ' + '9' * 5000 + '}}')

    assert storage.load() == AppState.initial(TODAY)


def test_deeply_nested_document_falls_back_to_defaults(storage, slot):
    slot.write('{"messages": ' + '[' * 100000 + ']' * 100000 + '}')

    assert storage.load() == AppState.initial(TODAY)


def test_undecodable_redis_payload_falls_back_to_defaults(clock):
    class BytesRedis:
        def get(self, key):
            return b'\xff\xfe'

    service = StorageService(RedisStateSlot(BytesRedis(), 'state'), clock=clock)

    assert service.load() == AppState.initial(TODAY)


def test_legacy_records_get_ids_that_survive_reloads(storage, slot):
    slot.write(
        json.dumps(
            {
                'messages': [{'text': 'hi', 'sender': 'user', 'timestamp': '2026-10-17T08:00:00Z'}],
                'habits': [{'title': 'Meditate'}],
            }
        )
    )

    first = storage.load()
    second = storage.load()

    assert first.habits[0].id == second.habits[0].id
    assert first.messages[0].id == second.messages[0].id

    state = storage.delete_habit(first.habits[0].id)
    assert state.habits == []


def test_up_to_date_document_is_not_rewritten(storage, slot):
    storage.add_habit('Meditate')

    with patch.object(slot, 'write') as write:
        storage.load()

    write.assert_not_called()


def test_invalid_field_types_fall_back_to_defaults(storage, slot):
    slot.write(json.dumps({'profile': {'age': 'not a number'}}))

    assert storage.load() == AppState.initial(TODAY)


def test_failed_save_is_swallowed_and_returns_in_memory_state(storage, slot):
    storage.update_current_plan(['Old task'])

    with patch.object(slot, 'write', side_effect=OSError('quota exceeded')):
        state = storage.update_current_plan(['New task'])

    assert state.current_plan == ['New task']
    assert storage.load().current_plan == ['Old task']


def test_unreadable_medium_raises(storage, slot):
    slot.write('{}')

    with patch.object(Path, 'read_text', side_effect=PermissionError('denied')):
        with pytest.raises(StorageUnavailableError):
            storage.load()


def test_clear_then_load_returns_initial_document(storage):
    storage.update_profile({'name': 'Jordan', 'onboardingCompleted': True})
    storage.add_habit('Stretch')

    storage.clear()

    assert storage.load() == AppState.initial(TODAY)


def test_clear_leaves_in_memory_copy_alone(storage):
    held = storage.update_profile({'name': 'Jordan'})

    storage.clear()

    assert held.profile.name == 'Jordan'


def test_update_profile_merges_fields_by_name_or_alias(storage):
    storage.update_profile({'name': 'Jordan', 'goal': 'Get strong'})
    state = storage.update_profile({'coachName': 'Blaze', 'target_weight': 170})

    assert state.profile.name == 'Jordan'
    assert state.profile.goal == 'Get strong'
    assert state.profile.coach_name == 'Blaze'
    assert state.profile.target_weight == 170


def test_update_profile_rejects_unknown_fields(storage):
    with pytest.raises(ValueError, match='favouriteColour'):
        storage.update_profile({'favouriteColour': 'blue'})


def test_weight_updates_on_same_day_replace_todays_sample(storage):
    storage.update_profile({'currentWeight': 180})
    state = storage.update_profile({'currentWeight': 178})

    assert state.profile.weight_history == [WeightEntry(date=TODAY, weight=178)]
    assert state.profile.current_weight == 178


def test_weight_updates_on_different_days_append_samples(storage, clock):
    storage.update_profile({'currentWeight': 180})
    clock.advance(days=1)
    state = storage.update_profile({'currentWeight': 179})

    assert [(e.date, e.weight) for e in state.profile.weight_history] == [
        (TODAY, 180),
        (date(2026, 10, 18), 179),
    ]


def test_unchanged_weight_does_not_add_sample(storage, clock):
    storage.update_profile({'currentWeight': 180})
    clock.advance(days=1)
    state = storage.update_profile({'currentWeight': 180, 'name': 'Jordan'})

    assert len(state.profile.weight_history) == 1


def test_legacy_current_weight_is_backfilled_once(storage, slot, clock):
    slot.write(json.dumps({'profile': {'name': 'Jordan', 'currentWeight': 180, 'weightHistory': []}}))

    state = storage.load()
    assert [(e.date, e.weight) for e in state.profile.weight_history] == [(TODAY, 180)]

    storage.save(state)
    clock.advance(days=3)
    assert len(storage.load().profile.weight_history) == 1


def test_add_message_appends_without_reordering(storage):
    later = Message(text='second', sender=Sender.USER, timestamp=datetime(2026, 10, 17, 10, tzinfo=timezone.utc))
    earlier = Message(text='first', sender=Sender.BOT, timestamp=datetime(2026, 10, 17, 9, tzinfo=timezone.utc))

    storage.add_message(later)
    state = storage.add_message(earlier)

    assert [m.text for m in state.messages] == ['second', 'first']


def test_update_current_plan_replaces_plan_and_stamps_date(storage, clock):
    storage.update_current_plan(['Run 5k', 'Stretch'])
    storage.toggle_task_completion('Run 5k', True)
    clock.advance(days=2)

    state = storage.update_current_plan(['Swim'])

    assert state.current_plan == ['Swim']
    assert state.last_plan_update == date(2026, 10, 19)
    # Completion history is keyed by task text and is left untouched.
    assert state.logs == [DailyLog(date=TODAY, completed_tasks=['Run 5k'])]


def test_toggle_task_completion_is_idempotent(storage):
    storage.toggle_task_completion('Drink 3L Water', True)
    state = storage.toggle_task_completion('Drink 3L Water', True)
    assert state.log_for(TODAY).completed_tasks == ['Drink 3L Water']

    state = storage.toggle_task_completion('Drink 3L Water', False)
    assert state.log_for(TODAY).completed_tasks == []

    state = storage.toggle_task_completion('Drink 3L Water', False)
    assert state.log_for(TODAY).completed_tasks == []
    assert len(state.logs) == 1


def test_toggle_task_completion_keeps_one_log_per_day(storage, clock):
    storage.toggle_task_completion('Walk', True)
    storage.toggle_task_completion('Stretch', True)
    clock.advance(days=1)
    state = storage.toggle_task_completion('Walk', True)

    assert [(log.date, log.completed_tasks) for log in state.logs] == [
        (TODAY, ['Walk', 'Stretch']),
        (date(2026, 10, 18), ['Walk']),
    ]


def test_add_habit_assigns_id_and_creation_time(storage, clock):
    state = storage.add_habit('  Meditate  ')

    habit = state.habits[0]
    assert habit.title == 'Meditate'
    assert habit.id
    assert habit.dates_completed == []
    assert habit.created_at == clock.now


def test_add_habit_rejects_blank_title(storage):
    with pytest.raises(ValueError):
        storage.add_habit('   ')


def test_habit_check_in_toggle_is_an_involution(storage):
    habit_id = storage.add_habit('Meditate').habits[0].id

    state = storage.toggle_habit_check_in(habit_id)
    assert state.habit(habit_id).dates_completed == [TODAY]

    state = storage.toggle_habit_check_in(habit_id)
    assert state.habit(habit_id).dates_completed == []


def test_habit_check_in_only_touches_today(storage, clock):
    habit_id = storage.add_habit('Meditate').habits[0].id
    storage.toggle_habit_check_in(habit_id)
    clock.advance(days=1)

    state = storage.toggle_habit_check_in(habit_id)
    state = storage.toggle_habit_check_in(habit_id)

    assert state.habit(habit_id).dates_completed == [TODAY]


def test_delete_habit_removes_only_that_habit(storage):
    storage.add_habit('Meditate')
    state = storage.add_habit('Journal')
    first, second = state.habits

    state = storage.delete_habit(first.id)

    assert [h.title for h in state.habits] == ['Journal']
    assert state.habit(second.id) is not None


def test_unknown_habit_ids_are_ignored(storage, caplog):
    storage.add_habit('Meditate')

    with caplog.at_level(logging.WARNING):
        state = storage.toggle_habit_check_in('missing')
        state = storage.delete_habit('missing')

    assert [h.title for h in state.habits] == ['Meditate']
    assert 'missing' in caplog.text


def test_today_follows_configured_timezone(slot):
    from zoneinfo import ZoneInfo

    late_evening_utc = datetime(2026, 10, 17, 23, 30, tzinfo=timezone.utc)
    service = StorageService(slot, clock=lambda: late_evening_utc, tz=ZoneInfo('Asia/Tokyo'))

    assert service.today() == date(2026, 10, 18)
