"""
Flask web application for bracket slot management.
"""
import os
import re
import unicodedata
import uuid
import yaml
from contextlib import ExitStack
from datetime import datetime
from filelock import FileLock
from flask import Flask, request, jsonify, abort
from brackets.slots import DEFAULT_BRACKET_SIZE, apply_repairs, is_power_of_two, next_power_of_two, repair_null_slots
from brackets.elimination import build_matches_from_slots, get_bracket_display

app = Flask(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('BRACKET_DATA_DIR', os.path.join(BASE_DIR, 'data'))
LOCK_TIMEOUT = 10  # seconds
_ID_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')


def _slugify(name: str, fallback: str) -> str:
    """Id for a display name: accents folded to ASCII, words joined by hyphens."""
    folded = unicodedata.normalize('NFKD', name).encode('ascii', 'ignore').decode('ascii')
    return '-'.join(re.findall(r'[a-z0-9]+', folded.lower())) or fallback


def _check_id(value: str):
    """Reject identifiers that could escape the data directory."""
    if not value or not _ID_PATTERN.match(value):
        abort(404)


def _event_dir(event_id: str) -> str:
    _check_id(event_id)
    return os.path.join(DATA_DIR, 'events', event_id)


def _category_dir(event_id: str, category_id: str) -> str:
    _check_id(category_id)
    return os.path.join(_event_dir(event_id), 'categories', category_id)


def _event_lock(event_id: str) -> FileLock:
    return FileLock(os.path.join(_event_dir(event_id), '.lock'), timeout=LOCK_TIMEOUT)


def _category_lock(event_id: str, category_id: str) -> FileLock:
    """Serializes the read-repair-write cycle of one category."""
    return FileLock(os.path.join(_category_dir(event_id, category_id), '.lock'), timeout=LOCK_TIMEOUT)


def _load_yaml(path: str, default):
    """Load a data file. Unparseable files raise rather than read as empty, so they are never overwritten."""
    if not os.path.exists(path):
        return default
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        app.logger.error(f'Failed to parse {path}: {e}')
        raise
    return data if data else default


def _save_yaml(path: str, data):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)


@app.errorhandler(yaml.YAMLError)
def handle_unreadable_data(e):
    return jsonify({'success': False, 'error': 'Stored data could not be read; nothing was changed.'}), 500


def load_event(event_id: str):
    """Load event settings, or None if the event does not exist."""
    return _load_yaml(os.path.join(_event_dir(event_id), 'event.yaml'), None)


def save_event(event_id: str, event: dict):
    _save_yaml(os.path.join(_event_dir(event_id), 'event.yaml'), event)


def list_category_ids(event_id: str) -> list:
    categories_dir = os.path.join(_event_dir(event_id), 'categories')
    if not os.path.isdir(categories_dir):
        return []
    return sorted(
        name for name in os.listdir(categories_dir)
        if os.path.isdir(os.path.join(categories_dir, name))
    )


def load_category(event_id: str, category_id: str):
    """Load category settings, or None if the category does not exist."""
    return _load_yaml(os.path.join(_category_dir(event_id, category_id), 'category.yaml'), None)


def save_category(event_id: str, category_id: str, category: dict):
    _save_yaml(os.path.join(_category_dir(event_id, category_id), 'category.yaml'), category)


def load_registrations(event_id: str, category_id: str) -> list:
    path = os.path.join(_category_dir(event_id, category_id), 'registrations.yaml')
    data = _load_yaml(path, {})
    return data.get('registrations', []) or []


def save_registrations(event_id: str, category_id: str, registrations: list):
    path = os.path.join(_category_dir(event_id, category_id), 'registrations.yaml')
    _save_yaml(path, {'registrations': registrations})


def load_matches(event_id: str, category_id: str) -> list:
    path = os.path.join(_category_dir(event_id, category_id), 'matches.yaml')
    data = _load_yaml(path, {})
    return data.get('matches', []) or []


def save_matches(event_id: str, category_id: str, matches: list):
    path = os.path.join(_category_dir(event_id, category_id), 'matches.yaml')
    _save_yaml(path, {'matches': matches})


def delete_matches(event_id: str, category_id: str):
    path = os.path.join(_category_dir(event_id, category_id), 'matches.yaml')
    if os.path.exists(path):
        os.remove(path)


def _slotted_registrations(registrations: list) -> list:
    """Paid registrations holding a slot, ordered by slot."""
    slotted = [
        {
            'bracket_slot': r['bracket_slot'],
            'athlete_id': r.get('athlete_id'),
            'athlete_name': r.get('athlete_name', '')
        }
        for r in registrations
        if r.get('status') == 'paid' and r.get('bracket_slot') is not None
    ]
    return sorted(slotted, key=lambda s: s['bracket_slot'])


def _repair_category_slots(event_id: str, category_id: str, category: dict, registrations: list) -> bool:
    """
    Give every paid registration without a slot the next free one.

    Mutates category and registrations in place. Callers hold the category
    lock and persist both. Returns True if anything changed.
    """
    bracket_size = category.get('bracket_size') or DEFAULT_BRACKET_SIZE
    if not is_power_of_two(bracket_size) or bracket_size < 2:
        raise ValueError(f'bracket_size must be a power of two >= 2, got {bracket_size!r}')
    paid = [r for r in registrations if r.get('status') == 'paid']
    if not any(r.get('bracket_slot') is None for r in paid):
        return False

    result = repair_null_slots(paid, bracket_size)
    apply_repairs(registrations, result)

    app.logger.info(f'Assigned {len(result.repairs)} slot(s) in {event_id}/{category_id}')
    if result.new_bracket_size > bracket_size:
        app.logger.info(f'Bracket {event_id}/{category_id} grew from {bracket_size} to '
                        f'{result.new_bracket_size}, moved {len(result.migrations)} slot(s)')
    category['bracket_size'] = result.new_bracket_size
    return True


def _category_summary(event_id: str, category_id: str) -> dict:
    category = load_category(event_id, category_id) or {}
    registrations = load_registrations(event_id, category_id)
    return {
        'id': category_id,
        'name': category.get('name', category_id),
        'bracket_size': category.get('bracket_size') or DEFAULT_BRACKET_SIZE,
        'is_locked': category.get('is_locked', False),
        'registrations': len([r for r in registrations if r.get('status') != 'cancelled']),
        'paid': len([r for r in registrations if r.get('status') == 'paid'])
    }


@app.route('/api/events', methods=['POST'])
def api_create_event():
    """Create an event and its categories."""
    data = request.get_json(silent=True) or {}
    name = str(data.get('name', '')).strip()
    if not name:
        return jsonify({'success': False, 'error': 'Event name is required.'}), 400

    event_id = _slugify(name, 'event')

    categories = {}
    for entry in data.get('categories', []):
        category_name = str(entry.get('name', '')).strip()
        if not category_name:
            return jsonify({'success': False, 'error': 'Category name is required.'}), 400
        category_id = _slugify(category_name, 'category')
        if category_id in categories:
            return jsonify({'success': False, 'error': f'Duplicate category "{category_name}".'}), 400

        bracket_size = entry.get('bracket_size')
        if bracket_size is None and entry.get('expected_athletes'):
            try:
                bracket_size = next_power_of_two(int(entry['expected_athletes']))
            except (TypeError, ValueError):
                return jsonify({'success': False, 'error': 'Expected athletes must be an integer.'}), 400
        if bracket_size is None:
            bracket_size = DEFAULT_BRACKET_SIZE
        if not is_power_of_two(bracket_size) or bracket_size < 2:
            return jsonify({'success': False, 'error': 'Bracket size must be a power of two (2, 4, 8, ...).'}), 400

        categories[category_id] = {
            'name': category_name,
            'bracket_size': bracket_size,
            'is_locked': False,
            'lock_at': None
        }

    os.makedirs(_event_dir(event_id), exist_ok=True)
    with _event_lock(event_id):
        if load_event(event_id) is not None:
            return jsonify({'success': False, 'error': f'An event with a similar name already exists ("{event_id}").'}), 409
        save_event(event_id, {
            'name': name,
            'is_open_for_inscriptions': bool(data.get('is_open_for_inscriptions', True)),
            'created': datetime.now().isoformat()
        })
        for category_id, category in categories.items():
            save_category(event_id, category_id, category)

    app.logger.info(f'Created event {event_id} with {len(categories)} categories')
    return jsonify({'success': True, 'event_id': event_id, 'categories': list(categories.keys())})


@app.route('/api/events/<event_id>', methods=['GET'])
def api_get_event(event_id):
    """Event settings with a summary of each category."""
    event = load_event(event_id)
    if event is None:
        return jsonify({'success': False, 'error': 'Event not found.'}), 404

    return jsonify({
        'success': True,
        'event_id': event_id,
        'name': event.get('name', event_id),
        'is_open_for_inscriptions': event.get('is_open_for_inscriptions', False),
        'categories': [_category_summary(event_id, c) for c in list_category_ids(event_id)]
    })


@app.route('/api/events/<event_id>/categories/<category_id>/registrations', methods=['POST'])
def api_register_athlete(event_id, category_id):
    """Register an athlete in a category. The slot is assigned once paid."""
    event = load_event(event_id)
    if event is None or load_category(event_id, category_id) is None:
        return jsonify({'success': False, 'error': 'Event or category not found.'}), 404
    if not event.get('is_open_for_inscriptions', False):
        return jsonify({'success': False, 'error': 'Registrations are closed for this event.'}), 400

    data = request.get_json(silent=True) or {}
    athlete_id = str(data.get('athlete_id', '')).strip()
    athlete_name = str(data.get('athlete_name', '')).strip()
    if not athlete_id or not athlete_name:
        return jsonify({'success': False, 'error': 'Athlete id and name are required.'}), 400

    with _category_lock(event_id, category_id):
        category = load_category(event_id, category_id)
        if category.get('is_locked', False):
            return jsonify({'success': False, 'error': 'Category is locked.'}), 400

        registrations = load_registrations(event_id, category_id)
        if any(r.get('athlete_id') == athlete_id and r.get('status') != 'cancelled' for r in registrations):
            return jsonify({'success': False, 'error': 'Athlete is already registered in this category.'}), 409

        registration = {
            'id': uuid.uuid4().hex,
            'athlete_id': athlete_id,
            'athlete_name': athlete_name,
            'status': 'pending',
            'bracket_slot': None,
            'created_at': datetime.now().isoformat()
        }
        registrations.append(registration)
        save_registrations(event_id, category_id, registrations)

    return jsonify({'success': True, 'registration': registration})


def _set_registration_status(event_id, category_id, registration_id, status):
    if load_category(event_id, category_id) is None:
        return jsonify({'success': False, 'error': 'Category not found.'}), 404

    with _category_lock(event_id, category_id):
        if load_category(event_id, category_id).get('is_locked', False):
            return jsonify({'success': False, 'error': 'Category is locked; reopen registrations first.'}), 409
        registrations = load_registrations(event_id, category_id)
        registration = next((r for r in registrations if r['id'] == registration_id), None)
        if registration is None:
            return jsonify({'success': False, 'error': 'Registration not found.'}), 404
        if registration.get('status') == 'cancelled':
            return jsonify({'success': False, 'error': 'Registration is cancelled.'}), 400

        registration['status'] = status
        if status == 'cancelled':
            registration['bracket_slot'] = None
        save_registrations(event_id, category_id, registrations)

    return jsonify({'success': True, 'status': status})


@app.route('/api/events/<event_id>/categories/<category_id>/registrations/<registration_id>/paid', methods=['POST'])
def api_mark_paid(event_id, category_id, registration_id):
    """Mark a registration as paid, making it eligible for a bracket slot."""
    return _set_registration_status(event_id, category_id, registration_id, 'paid')


@app.route('/api/events/<event_id>/categories/<category_id>/registrations/<registration_id>/cancel', methods=['POST'])
def api_cancel_registration(event_id, category_id, registration_id):
    """Cancel a registration and free its slot."""
    return _set_registration_status(event_id, category_id, registration_id, 'cancelled')


@app.route('/api/events/<event_id>/categories/<category_id>/bracket', methods=['GET'])
def api_get_bracket(event_id, category_id):
    """Bracket of a category: persisted matches if locked, otherwise a live preview."""
    if load_event(event_id) is None or load_category(event_id, category_id) is None:
        return jsonify({'success': False, 'error': 'Event or category not found.'}), 404

    with _category_lock(event_id, category_id):
        category = load_category(event_id, category_id)
        bracket_size = category.get('bracket_size') or DEFAULT_BRACKET_SIZE

        if category.get('is_locked', False):
            matches = sorted(load_matches(event_id, category_id), key=lambda m: (m['round'], m['match_no']))
            return jsonify({
                'success': True,
                'bracket_size': bracket_size,
                'is_locked': True,
                'matches': matches
            })

        registrations = load_registrations(event_id, category_id)
        try:
            if _repair_category_slots(event_id, category_id, category, registrations):
                save_registrations(event_id, category_id, registrations)
                save_category(event_id, category_id, category)
        except ValueError as e:
            app.logger.warning(f'Cannot assign slots in {event_id}/{category_id}: {e}')
            return jsonify({'success': False, 'error': str(e)}), 400

    bracket_size = category.get('bracket_size') or DEFAULT_BRACKET_SIZE
    slotted = _slotted_registrations(registrations)
    display = get_bracket_display(bracket_size, slotted, is_preview=True)
    return jsonify({
        'success': True,
        'bracket_size': bracket_size,
        'is_locked': False,
        'total_rounds': display['total_rounds'],
        'byes': display['byes'],
        'matches': [match for round_matches in display['rounds'].values() for match in round_matches],
        'registrations': slotted
    })


@app.route('/api/events/<event_id>/registrations/stop', methods=['POST'])
def api_stop_registrations(event_id):
    """Close registrations, lock every category and generate its first round."""
    if load_event(event_id) is None:
        return jsonify({'success': False, 'error': 'Event not found.'}), 404

    with ExitStack() as locks:
        # Event lock first, then categories in name order
        locks.enter_context(_event_lock(event_id))
        category_ids = list_category_ids(event_id)
        for category_id in category_ids:
            locks.enter_context(_category_lock(event_id, category_id))

        # Every category must repair cleanly before anything is written
        staged = []
        for category_id in category_ids:
            category = load_category(event_id, category_id) or {}
            registrations = load_registrations(event_id, category_id)
            try:
                _repair_category_slots(event_id, category_id, category, registrations)
            except ValueError as e:
                app.logger.warning(f'Cannot assign slots in {event_id}/{category_id}: {e}')
                return jsonify({'success': False, 'error': f'{category_id}: {e}'}), 400
            staged.append((category_id, category, registrations))

        event = load_event(event_id)
        event['is_open_for_inscriptions'] = False
        save_event(event_id, event)

        generated = 0
        lock_at = datetime.now().isoformat()
        for category_id, category, registrations in staged:
            bracket_size = category.get('bracket_size') or DEFAULT_BRACKET_SIZE
            category['bracket_size'] = bracket_size
            category['is_locked'] = True
            category['lock_at'] = lock_at
            save_registrations(event_id, category_id, registrations)
            save_category(event_id, category_id, category)

            slotted = _slotted_registrations(registrations)
            if not slotted:
                continue
            # Only the first round is known before results come in
            first_round = [
                m for m in build_matches_from_slots(bracket_size, slotted, is_preview=False)
                if m['round'] == 1
            ]
            for match in first_round:
                match['id'] = uuid.uuid4().hex
                match['event_id'] = event_id
                match['category_id'] = category_id
            save_matches(event_id, category_id, first_round)
            generated += 1

    app.logger.info(f'Registrations closed for {event_id}, generated brackets for {generated} categories')
    return jsonify({'success': True, 'message': 'Registrations closed and brackets generated.',
                    'categories_generated': generated})


@app.route('/api/events/<event_id>/registrations/reopen', methods=['POST'])
def api_reopen_registrations(event_id):
    """Reopen registrations, unlock categories and discard generated matches."""
    if load_event(event_id) is None:
        return jsonify({'success': False, 'error': 'Event not found.'}), 404

    with _event_lock(event_id):
        event = load_event(event_id)
        event['is_open_for_inscriptions'] = True
        save_event(event_id, event)

    for category_id in list_category_ids(event_id):
        with _category_lock(event_id, category_id):
            category = load_category(event_id, category_id) or {}
            category['is_locked'] = False
            category['lock_at'] = None
            save_category(event_id, category_id, category)
            delete_matches(event_id, category_id)

    return jsonify({'success': True, 'message': 'Registrations reopened.'})


if __name__ == '__main__':
    app.run(debug=True, port=5000)
