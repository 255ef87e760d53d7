from arena import db
from flask_login import UserMixin
from sqlalchemy.orm import validates
from datetime import datetime, timezone
import uuid


def utcnow():
    """Naive UTC timestamp; SQLite drops tzinfo so everything is stored naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    return value.isoformat() + 'Z' if value else None


class SessionState:
    WAITING = 'WAITING'
    LIVE = 'LIVE'
    ENDED = 'ENDED'
    CANCELLED = 'CANCELLED'
    ALL = (WAITING, LIVE, ENDED, CANCELLED)
    TERMINAL = (ENDED, CANCELLED)


class ScoringStrategy:
    POINTS = 'POINTS'
    TASKS = 'TASKS'
    RANDOM = 'RANDOM'
    COMBINED = 'COMBINED'
    ALL = (POINTS, TASKS, RANDOM, COMBINED)


class RewardStatus:
    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'


class Participant(UserMixin, db.Model):
    __tablename__ = 'participant'
    id = db.Column(db.Integer, primary_key=True)
    handle = db.Column(db.String(30), unique=True, nullable=False, index=True)
    payout_address = db.Column(db.String(42), unique=True, nullable=False)
    password_hash = db.Column(db.String(128), nullable=False)
    is_active_account = db.Column(db.Boolean, default=True, nullable=False)
    sessions_joined = db.Column(db.Integer, default=0, nullable=False)
    sessions_won = db.Column(db.Integer, default=0, nullable=False)
    total_reward = db.Column(db.Numeric(20, 6), default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @property
    def is_active(self):
        # Flask-Login consults this before accepting a loaded user
        return bool(self.is_active_account)

    def to_dict(self, include_stats=False):
        data = {
            'id': self.id,
            'handle': self.handle,
            'payoutAddress': self.payout_address,
        }
        if include_stats:
            data.update({
                'sessionsJoined': self.sessions_joined or 0,
                'sessionsWon': self.sessions_won or 0,
                'totalReward': float(self.total_reward or 0),
            })
        return data


class GameSession(db.Model):
    __tablename__ = 'game_session'
    id = db.Column(db.Integer, primary_key=True)
    public_id = db.Column(db.String(36), unique=True, nullable=False, index=True,
                          default=lambda: str(uuid.uuid4()))
    state = db.Column(db.String(16), nullable=False, default=SessionState.WAITING, index=True)
    creator_id = db.Column(db.Integer, db.ForeignKey('participant.id'), nullable=False)
    winner_id = db.Column(db.Integer, db.ForeignKey('participant.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    started_at = db.Column(db.DateTime, nullable=True)
    ended_at = db.Column(db.DateTime, nullable=True)
    scheduled_end_at = db.Column(db.DateTime, nullable=True, index=True)
    # Typed configuration
    duration_minutes = db.Column(db.Integer, nullable=False, default=10)
    max_participants = db.Column(db.Integer, nullable=False, default=50)
    min_participants_to_start = db.Column(db.Integer, nullable=False, default=2)
    scoring_strategy = db.Column(db.String(16), nullable=False, default=ScoringStrategy.POINTS)
    points_per_task = db.Column(db.Integer, nullable=False, default=10)
    enable_random_winner = db.Column(db.Boolean, nullable=False, default=False)
    auto_start = db.Column(db.Boolean, nullable=False, default=True)
    auto_end = db.Column(db.Boolean, nullable=False, default=True)
    # Bounded string->string map, validated on create
    labels = db.Column(db.JSON, nullable=True)
    version = db.Column(db.Integer, nullable=False)

    creator = db.relationship('Participant', foreign_keys=[creator_id])
    winner = db.relationship('Participant', foreign_keys=[winner_id])
    entries = db.relationship('ParticipantSession', back_populates='session',
                              order_by='ParticipantSession.id')
    reward = db.relationship('RewardRecord', back_populates='session', uselist=False)

    __mapper_args__ = {'version_id_col': version}
    __table_args__ = (
        db.CheckConstraint('min_participants_to_start <= max_participants', name='ck_session_capacity'),
    )

    @property
    def is_terminal(self):
        return self.state in SessionState.TERMINAL

    @property
    def active_entries(self):
        return [e for e in self.entries if e.is_active]

    @property
    def participant_count(self):
        return len(self.active_entries)

    @property
    def is_full(self):
        return self.participant_count >= self.max_participants

    def entry_for(self, participant_id):
        for entry in self.entries:
            if entry.participant_id == participant_id:
                return entry
        return None

    def remaining_seconds(self, now=None):
        if self.state != SessionState.LIVE or not self.scheduled_end_at:
            return None
        now = now or utcnow()
        return max(0, int((self.scheduled_end_at - now).total_seconds()))

    def config_dict(self):
        return {
            'scoringStrategy': self.scoring_strategy,
            'pointsPerTask': self.points_per_task,
            'enableRandomWinner': self.enable_random_winner,
            'autoStart': self.auto_start,
            'autoEnd': self.auto_end,
        }

    def to_dict(self, include_participants=True):
        data = {
            'sessionId': self.public_id,
            'state': self.state,
            'creator': self.creator.to_dict() if self.creator else None,
            'winner': self.winner.to_dict() if self.winner else None,
            'participantCount': self.participant_count,
            'durationMinutes': self.duration_minutes,
            'maxParticipants': self.max_participants,
            'minParticipantsToStart': self.min_participants_to_start,
            'config': self.config_dict(),
            'labels': self.labels or {},
            'isFull': self.is_full,
            'createdAt': isoformat(self.created_at),
            'startedAt': isoformat(self.started_at),
            'endedAt': isoformat(self.ended_at),
            'scheduledEndAt': isoformat(self.scheduled_end_at),
            'remainingSeconds': self.remaining_seconds(),
        }
        if include_participants:
            data['participants'] = [e.participant.to_dict() for e in self.active_entries]
        return data


class ParticipantSession(db.Model):
    __tablename__ = 'participant_session'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, index=True)
    participant_id = db.Column(db.Integer, db.ForeignKey('participant.id'), nullable=False, index=True)
    score = db.Column(db.Integer, default=0, nullable=False)
    tasks_completed = db.Column(db.Integer, default=0, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    joined_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    left_at = db.Column(db.DateTime, nullable=True)
    last_activity_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    rank = db.Column(db.Integer, nullable=True)
    final_rank = db.Column(db.Integer, nullable=True)

    session = db.relationship('GameSession', back_populates='entries')
    participant = db.relationship('Participant')

    __table_args__ = (
        db.UniqueConstraint('session_id', 'participant_id', name='uq_participant_session_pair'),
    )

    @validates('score', 'tasks_completed')
    def _clamp_non_negative(self, key, value):
        if value is None or value < 0:
            return 0
        return value

    def to_leaderboard_entry(self, rank):
        return {
            'rank': rank,
            'participantId': self.participant_id,
            'handle': self.participant.handle if self.participant else None,
            'score': self.score,
            'tasksCompleted': self.tasks_completed,
            'joinedAt': isoformat(self.joined_at),
        }


class RewardRecord(db.Model):
    __tablename__ = 'reward_record'
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('game_session.id'), nullable=False, unique=True)
    participant_id = db.Column(db.Integer, db.ForeignKey('participant.id'), nullable=False, index=True)
    token_amount = db.Column(db.Numeric(20, 6), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=RewardStatus.PENDING, index=True)
    tx_ref = db.Column(db.String(66), unique=True, nullable=True)
    block_ref = db.Column(db.String(32), nullable=True)
    network = db.Column(db.String(16), nullable=False, default='MOCK')
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    rewarded_at = db.Column(db.DateTime, nullable=True)

    session = db.relationship('GameSession', back_populates='reward')
    participant = db.relationship('Participant')

    def to_dict(self):
        return {
            'id': self.id,
            'sessionId': self.session.public_id if self.session else None,
            'participantId': self.participant_id,
            'tokenAmount': float(self.token_amount),
            'status': self.status,
            'txRef': self.tx_ref,
            'blockRef': self.block_ref,
            'network': self.network,
            'retryCount': self.retry_count,
            'errorMessage': self.error_message,
            'createdAt': isoformat(self.created_at),
            'rewardedAt': isoformat(self.rewarded_at),
        }
