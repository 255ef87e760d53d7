"""Input validation for identities, session configuration and score reports."""

import re

from arena.errors import InvalidConfig, ValidationError
from arena.models import ScoringStrategy

HANDLE_RE = re.compile(r'^[a-zA-Z0-9_]{3,30}$')
ADDRESS_RE = re.compile(r'^0x[a-fA-F0-9]{40}$')

DURATION_RANGE = (1, 120)
MAX_PARTICIPANTS_RANGE = (2, 1000)
POINTS_PER_TASK_RANGE = (1, 1000)
MAX_LABELS = 8
MAX_LABEL_KEY = 32
MAX_LABEL_VALUE = 128

DEFAULT_SESSION_CONFIG = {
    'duration_minutes': 10,
    'max_participants': 50,
    'min_participants_to_start': 2,
    'scoring_strategy': ScoringStrategy.POINTS,
    'points_per_task': 10,
    'enable_random_winner': False,
    'auto_start': True,
    'auto_end': True,
}


def is_valid_handle(handle):
    return isinstance(handle, str) and bool(HANDLE_RE.match(handle))


def is_valid_address(address):
    return isinstance(address, str) and bool(ADDRESS_RE.match(address))


def _is_int(value):
    # bool is an int subclass; true/false are not counts
    return isinstance(value, int) and not isinstance(value, bool)


def _in_range(value, bounds):
    return _is_int(value) and bounds[0] <= value <= bounds[1]


def validate_registration(data):
    if not isinstance(data, dict):
        raise ValidationError('Request body must be an object')
    errors = []
    handle = data.get('handle')
    address = data.get('payoutAddress')
    password = data.get('password')
    if not is_valid_handle(handle):
        errors.append('Handle must be 3-30 characters and contain only letters, numbers, and underscores')
    if not is_valid_address(address):
        errors.append('Invalid payout address format')
    if not isinstance(password, str) or len(password) < 8:
        errors.append('Password must be at least 8 characters')
    if errors:
        raise ValidationError('Validation failed', errors)
    return handle, address, password


def validate_labels(labels):
    if labels is None:
        return {}
    if not isinstance(labels, dict):
        raise InvalidConfig('Labels must be an object')
    if len(labels) > MAX_LABELS:
        raise InvalidConfig(f'At most {MAX_LABELS} labels are allowed')
    cleaned = {}
    for key, value in labels.items():
        if not isinstance(key, str) or not key or len(key) > MAX_LABEL_KEY:
            raise InvalidConfig(f'Label keys must be 1-{MAX_LABEL_KEY} characters')
        if not isinstance(value, str) or len(value) > MAX_LABEL_VALUE:
            raise InvalidConfig(f'Label values must be strings of at most {MAX_LABEL_VALUE} characters')
        cleaned[key] = value
    return cleaned


def validate_session_config(data):
    """Merge a create-session request body over the defaults.

    Accepts the flat capacity/duration keys and a nested ``config`` object
    for strategy and flags. Returns a dict keyed by model column names.
    """
    data = data or {}
    if not isinstance(data, dict):
        raise InvalidConfig('Request body must be an object')
    nested = data.get('config') or {}
    if not isinstance(nested, dict):
        raise InvalidConfig('config must be an object')

    cfg = dict(DEFAULT_SESSION_CONFIG)
    mapping = {
        'durationMinutes': ('duration_minutes', data),
        'maxParticipants': ('max_participants', data),
        'minParticipantsToStart': ('min_participants_to_start', data),
        'scoringStrategy': ('scoring_strategy', nested),
        'pointsPerTask': ('points_per_task', nested),
        'enableRandomWinner': ('enable_random_winner', nested),
        'autoStart': ('auto_start', nested),
        'autoEnd': ('auto_end', nested),
    }
    for key, (column, source) in mapping.items():
        if source.get(key) is not None:
            cfg[column] = source[key]

    errors = []
    if not _in_range(cfg['duration_minutes'], DURATION_RANGE):
        errors.append(f'Duration must be between {DURATION_RANGE[0]} and {DURATION_RANGE[1]} minutes')
    if not _in_range(cfg['max_participants'], MAX_PARTICIPANTS_RANGE):
        errors.append(
            f'Max participants must be between {MAX_PARTICIPANTS_RANGE[0]} and {MAX_PARTICIPANTS_RANGE[1]}'
        )
    if not _is_int(cfg['min_participants_to_start']) or cfg['min_participants_to_start'] < 1:
        errors.append('Min participants to start must be at least 1')
    elif _is_int(cfg['max_participants']) and cfg['min_participants_to_start'] > cfg['max_participants']:
        errors.append('Min participants to start cannot exceed max participants')
    if cfg['scoring_strategy'] not in ScoringStrategy.ALL:
        errors.append(f"Scoring strategy must be one of {', '.join(ScoringStrategy.ALL)}")
    if not _in_range(cfg['points_per_task'], POINTS_PER_TASK_RANGE):
        errors.append(
            f'Points per task must be between {POINTS_PER_TASK_RANGE[0]} and {POINTS_PER_TASK_RANGE[1]}'
        )
    for flag in ('enable_random_winner', 'auto_start', 'auto_end'):
        if not isinstance(cfg[flag], bool):
            errors.append(f'{flag} must be a boolean')
    if errors:
        raise InvalidConfig('Invalid session configuration', errors)

    cfg['labels'] = validate_labels(data.get('labels'))
    return cfg


def validate_score_report(data):
    """Return ``(score, tasks_completed)``; either may be None but not both."""
    data = data or {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be an object')
    score = data.get('score')
    tasks = data.get('tasksCompleted')
    if score is None and tasks is None:
        raise ValidationError('Score or tasksCompleted is required')
    errors = []
    if score is not None and (not _is_int(score) or score < 0):
        errors.append('Score must be a non-negative integer')
    if tasks is not None and (not _is_int(tasks) or tasks < 0):
        errors.append('Tasks completed must be a non-negative integer')
    if errors:
        raise ValidationError('Validation failed', errors)
    return score, tasks


def parse_limit(raw, default, maximum=100):
    if raw is None or raw == '':
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError('limit must be an integer')
    if value < 1 or value > maximum:
        raise ValidationError(f'limit must be between 1 and {maximum}')
    return value
