"""create game, game_definition, play_session, player and round tables

Revision ID: 3a7c91d0b2e4
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3a7c91d0b2e4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'game' not in existing_tables:
        op.create_table(
            'game',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('slug', sa.String(length=100), nullable=False),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('description', sa.Text(), nullable=False),
            sa.Column('min_players', sa.Integer(), nullable=True),
            sa.Column('max_players', sa.Integer(), nullable=True),
            sa.Column('status', sa.String(length=32), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index(op.f('ix_game_slug'), 'game', ['slug'], unique=True)

    if 'game_definition' not in existing_tables:
        op.create_table(
            'game_definition',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('game_id', sa.Integer(), nullable=False),
            sa.Column('definition', sa.Text(), nullable=False),
            sa.Column('version', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(['game_id'], ['game.id']),
            sa.PrimaryKeyConstraint('id'),
        )

    if 'play_session' not in existing_tables:
        op.create_table(
            'play_session',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('session_code', sa.String(length=8), nullable=True),
            sa.Column('game_id', sa.Integer(), nullable=False),
            sa.Column('definition_id', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(length=32), nullable=True),
            sa.Column('current_round', sa.Integer(), nullable=False),
            sa.Column('result', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(['game_id'], ['game.id']),
            sa.ForeignKeyConstraint(['definition_id'], ['game_definition.id']),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index(op.f('ix_play_session_session_code'), 'play_session', ['session_code'], unique=True)

    if 'player' not in existing_tables:
        op.create_table(
            'player',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=64), nullable=False),
            sa.Column('session_id', sa.Integer(), nullable=False),
            sa.Column('score', sa.Float(), nullable=True),
            sa.ForeignKeyConstraint(['session_id'], ['play_session.id']),
            sa.PrimaryKeyConstraint('id'),
        )

    if 'round' not in existing_tables:
        op.create_table(
            'round',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('session_id', sa.Integer(), nullable=False),
            sa.Column('round_number', sa.Integer(), nullable=False),
            sa.Column('fields', sa.Text(), nullable=False),
            sa.Column('round_scores', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(['session_id'], ['play_session.id']),
            sa.PrimaryKeyConstraint('id'),
        )


def downgrade():
    op.drop_table('round')
    op.drop_table('player')
    op.drop_index(op.f('ix_play_session_session_code'), table_name='play_session')
    op.drop_table('play_session')
    op.drop_table('game_definition')
    op.drop_index(op.f('ix_game_slug'), table_name='game')
    op.drop_table('game')
