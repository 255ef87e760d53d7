"""create participant, game_session, participant_session and reward_record

Revision ID: 5c0e7a91b2d4
Revises:
Create Date: 2026-10-17 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c0e7a91b2d4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'participant',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('handle', sa.String(length=30), nullable=False),
        sa.Column('payout_address', sa.String(length=42), nullable=False),
        sa.Column('password_hash', sa.String(length=128), nullable=False),
        sa.Column('is_active_account', sa.Boolean(), nullable=False),
        sa.Column('sessions_joined', sa.Integer(), nullable=False),
        sa.Column('sessions_won', sa.Integer(), nullable=False),
        sa.Column('total_reward', sa.Numeric(precision=20, scale=6), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payout_address'),
    )
    with op.batch_alter_table('participant') as batch_op:
        batch_op.create_index(batch_op.f('ix_participant_handle'), ['handle'], unique=True)

    op.create_table(
        'game_session',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('public_id', sa.String(length=36), nullable=False),
        sa.Column('state', sa.String(length=16), nullable=False),
        sa.Column('creator_id', sa.Integer(), nullable=False),
        sa.Column('winner_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('scheduled_end_at', sa.DateTime(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('max_participants', sa.Integer(), nullable=False),
        sa.Column('min_participants_to_start', sa.Integer(), nullable=False),
        sa.Column('scoring_strategy', sa.String(length=16), nullable=False),
        sa.Column('points_per_task', sa.Integer(), nullable=False),
        sa.Column('enable_random_winner', sa.Boolean(), nullable=False),
        sa.Column('auto_start', sa.Boolean(), nullable=False),
        sa.Column('auto_end', sa.Boolean(), nullable=False),
        sa.Column('labels', sa.JSON(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.CheckConstraint('min_participants_to_start <= max_participants', name='ck_session_capacity'),
        sa.ForeignKeyConstraint(['creator_id'], ['participant.id']),
        sa.ForeignKeyConstraint(['winner_id'], ['participant.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('game_session') as batch_op:
        batch_op.create_index(batch_op.f('ix_game_session_public_id'), ['public_id'], unique=True)
        batch_op.create_index(batch_op.f('ix_game_session_state'), ['state'], unique=False)
        batch_op.create_index(batch_op.f('ix_game_session_scheduled_end_at'), ['scheduled_end_at'], unique=False)

    op.create_table(
        'participant_session',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('participant_id', sa.Integer(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('tasks_completed', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('joined_at', sa.DateTime(), nullable=False),
        sa.Column('left_at', sa.DateTime(), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(), nullable=False),
        sa.Column('rank', sa.Integer(), nullable=True),
        sa.Column('final_rank', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['participant_id'], ['participant.id']),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'participant_id', name='uq_participant_session_pair'),
    )
    with op.batch_alter_table('participant_session') as batch_op:
        batch_op.create_index(batch_op.f('ix_participant_session_session_id'), ['session_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_participant_session_participant_id'), ['participant_id'], unique=False)

    op.create_table(
        'reward_record',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('participant_id', sa.Integer(), nullable=False),
        sa.Column('token_amount', sa.Numeric(precision=20, scale=6), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('tx_ref', sa.String(length=66), nullable=True),
        sa.Column('block_ref', sa.String(length=32), nullable=True),
        sa.Column('network', sa.String(length=16), nullable=False),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('rewarded_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['participant_id'], ['participant.id']),
        sa.ForeignKeyConstraint(['session_id'], ['game_session.id']),
        sa.PrimaryKeyConstraint('id'),
        # one reward per session, one record per transaction
        sa.UniqueConstraint('session_id'),
        sa.UniqueConstraint('tx_ref'),
    )
    with op.batch_alter_table('reward_record') as batch_op:
        batch_op.create_index(batch_op.f('ix_reward_record_participant_id'), ['participant_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_reward_record_status'), ['status'], unique=False)


def downgrade():
    with op.batch_alter_table('reward_record') as batch_op:
        batch_op.drop_index(batch_op.f('ix_reward_record_status'))
        batch_op.drop_index(batch_op.f('ix_reward_record_participant_id'))
    op.drop_table('reward_record')

    with op.batch_alter_table('participant_session') as batch_op:
        batch_op.drop_index(batch_op.f('ix_participant_session_participant_id'))
        batch_op.drop_index(batch_op.f('ix_participant_session_session_id'))
    op.drop_table('participant_session')

    with op.batch_alter_table('game_session') as batch_op:
        batch_op.drop_index(batch_op.f('ix_game_session_scheduled_end_at'))
        batch_op.drop_index(batch_op.f('ix_game_session_state'))
        batch_op.drop_index(batch_op.f('ix_game_session_public_id'))
    op.drop_table('game_session')

    with op.batch_alter_table('participant') as batch_op:
        batch_op.drop_index(batch_op.f('ix_participant_handle'))
    op.drop_table('participant')
