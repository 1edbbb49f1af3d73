"""Create candidates, workflow_runs and workflow_checkpoints

Revision ID: 3f9c2a7d1b40
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '3f9c2a7d1b40'
down_revision = None
branch_labels = None
depends_on = None

DECISIONS = ('strong_no', 'no', 'maybe', 'yes', 'strong_yes')
STATUSES = ('applied', 'review', 'interview1', 'interview2', 'ha', 'offer', 'hired', 'rejected')
WORKFLOW_STATES = ('queued', 'retrieving', 'summarizing', 'grading', 'finalizing', 'completed', 'failed')

json_type = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade():
    op.create_table(
        'candidates',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('surname', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('fingerprint', sa.String(length=64), nullable=False),
        sa.Column('decision', sa.Enum(*DECISIONS, name='candidate_decision'), nullable=False),
        sa.Column('status', sa.Enum(*STATUSES, name='candidate_status'), nullable=False),
        sa.Column('ai_decision', sa.Enum(*DECISIONS, name='candidate_ai_decision'), nullable=True),
        sa.Column('cv', json_type, nullable=False),
        sa.Column('ha', json_type, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_candidates_fingerprint'), 'candidates', ['fingerprint'], unique=True)
    op.create_index(op.f('ix_candidates_status'), 'candidates', ['status'], unique=False)
    op.create_index(op.f('ix_candidates_last_updated'), 'candidates', ['last_updated'], unique=False)

    op.create_table(
        'workflow_runs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('candidate_id', sa.String(length=36), nullable=False),
        sa.Column('file_name', sa.String(), nullable=False),
        sa.Column('state', sa.Enum(*WORKFLOW_STATES, name='workflow_state'), nullable=False),
        sa.Column('active_key', sa.String(length=36), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('heartbeat_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['candidate_id'], ['candidates.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('active_key'),
    )
    op.create_index(op.f('ix_workflow_runs_candidate_id'), 'workflow_runs', ['candidate_id'], unique=False)
    op.create_index(op.f('ix_workflow_runs_state'), 'workflow_runs', ['state'], unique=False)
    op.create_index(op.f('ix_workflow_runs_heartbeat_at'), 'workflow_runs', ['heartbeat_at'], unique=False)

    op.create_table(
        'workflow_checkpoints',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.String(length=36), nullable=False),
        sa.Column('step', sa.String(length=32), nullable=False),
        sa.Column('result', json_type, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['run_id'], ['workflow_runs.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id', 'step', name='uq_workflow_checkpoints_run_step'),
    )
    op.create_index(op.f('ix_workflow_checkpoints_id'), 'workflow_checkpoints', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_checkpoints_run_id'), 'workflow_checkpoints', ['run_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_workflow_checkpoints_run_id'), table_name='workflow_checkpoints')
    op.drop_index(op.f('ix_workflow_checkpoints_id'), table_name='workflow_checkpoints')
    op.drop_table('workflow_checkpoints')

    op.drop_index(op.f('ix_workflow_runs_heartbeat_at'), table_name='workflow_runs')
    op.drop_index(op.f('ix_workflow_runs_state'), table_name='workflow_runs')
    op.drop_index(op.f('ix_workflow_runs_candidate_id'), table_name='workflow_runs')
    op.drop_table('workflow_runs')

    op.drop_index(op.f('ix_candidates_last_updated'), table_name='candidates')
    op.drop_index(op.f('ix_candidates_status'), table_name='candidates')
    op.drop_index(op.f('ix_candidates_fingerprint'), table_name='candidates')
    op.drop_table('candidates')

    sa.Enum(name='workflow_state').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='candidate_ai_decision').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='candidate_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='candidate_decision').drop(op.get_bind(), checkfirst=True)
