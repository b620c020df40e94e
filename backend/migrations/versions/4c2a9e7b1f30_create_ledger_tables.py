"""create group, member, bid round, bid, draw and draw history tables

Revision ID: 4c2a9e7b1f30
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2a9e7b1f30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    if 'bhishi_group' not in existing_tables:
        op.create_table(
            'bhishi_group',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=128), nullable=False),
            sa.Column('monthly_amount', sa.Integer(), nullable=False),
            sa.Column('group_type', sa.String(length=32), nullable=False),
            sa.Column('current_round', sa.Integer(), nullable=False, server_default='0'),
            sa.PrimaryKeyConstraint('id'),
        )

    if 'group_member' not in existing_tables:
        op.create_table(
            'group_member',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('group_id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=64), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
            sa.Column('has_won', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.ForeignKeyConstraint(['group_id'], ['bhishi_group.id']),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_group_member_group_id', 'group_member', ['group_id'])

    if 'bid_round' not in existing_tables:
        op.create_table(
            'bid_round',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('group_id', sa.Integer(), nullable=False),
            sa.Column('round_number', sa.Integer(), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False),
            sa.Column('start_time', sa.DateTime(), nullable=False),
            sa.Column('end_time', sa.DateTime(), nullable=True),
            sa.Column('minimum_bid', sa.Integer(), nullable=False),
            sa.Column('prize_amount', sa.Integer(), nullable=False),
            sa.Column('winner_id', sa.Integer(), nullable=True),
            sa.Column('winner_name', sa.String(length=64), nullable=True),
            sa.Column('winning_bid', sa.Integer(), nullable=True),
            sa.Column('current_lowest_bid', sa.Integer(), nullable=True),
            sa.Column('total_bids', sa.Integer(), nullable=False),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['group_id'], ['bhishi_group.id']),
            sa.ForeignKeyConstraint(['winner_id'], ['group_member.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('group_id', 'round_number', name='uq_bid_round_group_number'),
        )
        op.create_index('ix_bid_round_group_id', 'bid_round', ['group_id'])

    if 'member_bid' not in existing_tables:
        op.create_table(
            'member_bid',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('round_id', sa.Integer(), nullable=False),
            sa.Column('member_id', sa.Integer(), nullable=False),
            sa.Column('member_name', sa.String(length=64), nullable=False),
            sa.Column('bid_amount', sa.Integer(), nullable=False),
            sa.Column('bid_time', sa.DateTime(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column('superseded_at', sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(['round_id'], ['bid_round.id']),
            sa.ForeignKeyConstraint(['member_id'], ['group_member.id']),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_member_bid_round_id', 'member_bid', ['round_id'])
        op.create_index('ix_member_bid_round_member_active', 'member_bid', ['round_id', 'member_id', 'is_active'])

    if 'draw' not in existing_tables:
        op.create_table(
            'draw',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('group_id', sa.Integer(), nullable=False),
            sa.Column('round_number', sa.Integer(), nullable=False),
            sa.Column('start_timestamp', sa.DateTime(), nullable=False),
            sa.Column('duration_seconds', sa.Integer(), nullable=False),
            sa.Column('revealed', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('prize_amount', sa.Integer(), nullable=False),
            sa.Column('selected_member_id', sa.Integer(), nullable=False),
            sa.Column('selected_name', sa.String(length=64), nullable=False),
            sa.Column('winner_member_id', sa.Integer(), nullable=True),
            sa.Column('winner_name', sa.String(length=64), nullable=True),
            sa.Column('revealed_at', sa.DateTime(), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['group_id'], ['bhishi_group.id']),
            sa.ForeignKeyConstraint(['selected_member_id'], ['group_member.id']),
            sa.ForeignKeyConstraint(['winner_member_id'], ['group_member.id']),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_draw_group_id', 'draw', ['group_id'])

    if 'draw_history' not in existing_tables:
        op.create_table(
            'draw_history',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('group_id', sa.Integer(), nullable=False),
            sa.Column('draw_id', sa.Integer(), nullable=False),
            sa.Column('round_number', sa.Integer(), nullable=False),
            sa.Column('winner_member_id', sa.Integer(), nullable=False),
            sa.Column('winner_name', sa.String(length=64), nullable=False),
            sa.Column('amount', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.ForeignKeyConstraint(['group_id'], ['bhishi_group.id']),
            sa.ForeignKeyConstraint(['draw_id'], ['draw.id']),
            sa.ForeignKeyConstraint(['winner_member_id'], ['group_member.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('draw_id'),
        )
        op.create_index('ix_draw_history_group_id', 'draw_history', ['group_id'])


def downgrade():
    op.drop_index('ix_draw_history_group_id', table_name='draw_history')
    op.drop_table('draw_history')
    op.drop_index('ix_draw_group_id', table_name='draw')
    op.drop_table('draw')
    op.drop_index('ix_member_bid_round_member_active', table_name='member_bid')
    op.drop_index('ix_member_bid_round_id', table_name='member_bid')
    op.drop_table('member_bid')
    op.drop_index('ix_bid_round_group_id', table_name='bid_round')
    op.drop_table('bid_round')
    op.drop_index('ix_group_member_group_id', table_name='group_member')
    op.drop_table('group_member')
    op.drop_table('bhishi_group')
