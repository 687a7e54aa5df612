from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from flask import Blueprint, Response, current_app, jsonify, request

from .models import AppState
from .services.coach_service import CoachTurn, SessionBusyError
from .services.progress import dashboard_summary

main_bp = Blueprint('main', __name__, url_prefix='/api')

logger = logging.getLogger(__name__)


def _body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def _error(message: str, status: int) -> Tuple[Response, int]:
    return jsonify({'error': message}), status


def _state_payload(state: AppState) -> Dict[str, Any]:
    coach = current_app.coach_service
    staged = coach.staged_plan
    return {
        'state': state.to_document(),
        'stagedPlan': {'messageId': staged.message_id, 'plan': staged.plan} if staged else None,
        'busy': coach.busy,
    }


def _turn_payload(turn: CoachTurn) -> Dict[str, Any]:
    payload = _state_payload(turn.state)
    payload['reply'] = turn.reply.to_document()
    payload['habitsAdded'] = turn.habits_added
    payload['failed'] = turn.failed
    return payload


@main_bp.route('/state')
def get_state() -> Response:
    return jsonify(_state_payload(current_app.storage_service.load()))


@main_bp.route('/onboarding', methods=['POST'])
def onboarding() -> Response | Tuple[Response, int]:
    changes = dict(_body())
    changes['onboardingCompleted'] = True
    try:
        state = current_app.storage_service.update_profile(changes)
    except ValueError as exc:
        logger.info('onboarding.validation_failed', extra={'error': str(exc)})
        return _error(str(exc), 400)

    logger.info('onboarding.complete', extra={'user': state.profile.name})
    return jsonify(_state_payload(state))


@main_bp.route('/profile', methods=['PATCH'])
def update_profile() -> Response | Tuple[Response, int]:
    try:
        state = current_app.storage_service.update_profile(_body())
    except ValueError as exc:
        return _error(str(exc), 400)
    return jsonify(_state_payload(state))


@main_bp.route('/chat/start', methods=['POST'])
def start_chat() -> Response:
    turn: Optional[CoachTurn] = current_app.coach_service.start_session()
    if turn is None:
        return jsonify(_state_payload(current_app.storage_service.load()))
    return jsonify(_turn_payload(turn))


@main_bp.route('/chat', methods=['POST'])
def chat() -> Response | Tuple[Response, int]:
    body = _body()
    text = body.get('text') or ''
    image = body.get('image') or None
    if not isinstance(text, str) or (image is not None and not isinstance(image, str)):
        return _error('Text and image must be strings.', 400)

    try:
        turn = current_app.coach_service.send_message(text, image)
    except SessionBusyError as exc:
        logger.info('chat.send.busy')
        return _error(str(exc), 409)

    if turn is None:
        return _error('Type a message or attach an image first.', 400)
    if turn.failed:
        logger.warning('chat.send.failed')
    return jsonify(_turn_payload(turn))


@main_bp.route('/plan/confirm', methods=['POST'])
def confirm_plan() -> Response | Tuple[Response, int]:
    message_id = _body().get('messageId')
    state = current_app.coach_service.confirm_plan(message_id)
    if state is None:
        return _error('There is no pending plan to confirm.', 409)

    logger.info('plan.confirmed', extra={'tasks': len(state.current_plan)})
    return jsonify(_state_payload(state))


@main_bp.route('/tasks/toggle', methods=['POST'])
def toggle_task() -> Response | Tuple[Response, int]:
    body = _body()
    task = body.get('task')
    completed = body.get('completed')
    if not isinstance(task, str) or not task:
        return _error('A task is required.', 400)
    if not isinstance(completed, bool):
        return _error('"completed" must be true or false.', 400)

    state = current_app.storage_service.toggle_task_completion(task, completed)
    return jsonify(_state_payload(state))


@main_bp.route('/habits', methods=['POST'])
def add_habit() -> Response | Tuple[Response, int]:
    title = _body().get('title')
    try:
        state = current_app.storage_service.add_habit(title if isinstance(title, str) else '')
    except ValueError as exc:
        return _error(str(exc), 400)
    return jsonify(_state_payload(state)), 201


@main_bp.route('/habits/<habit_id>', methods=['DELETE'])
def delete_habit(habit_id: str) -> Response:
    return jsonify(_state_payload(current_app.storage_service.delete_habit(habit_id)))


@main_bp.route('/habits/<habit_id>/check-in', methods=['POST'])
def check_in_habit(habit_id: str) -> Response:
    return jsonify(_state_payload(current_app.storage_service.toggle_habit_check_in(habit_id)))


@main_bp.route('/dashboard')
def dashboard() -> Response:
    storage = current_app.storage_service
    return jsonify(dashboard_summary(storage.load(), storage.today()))


@main_bp.route('/motivation', methods=['POST'])
def motivation() -> Response:
    return jsonify({'text': current_app.coach_service.motivate()})


@main_bp.route('/reset', methods=['POST'])
def reset() -> Response:
    state = current_app.coach_service.reset()
    logger.info('settings.reset.success')
    return jsonify(_state_payload(state))
