"""initial schema - authorization tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    # Create organisations table (owner FK added once users exists)
    op.create_table(
        'organisations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=True, index=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('organisation_id', sa.Integer(), sa.ForeignKey('organisations.id', ondelete='SET NULL'), nullable=True, index=True),
        *_timestamps(),
    )

    op.create_foreign_key(
        'fk_organisations_owner_id', 'organisations', 'users',
        ['owner_id'], ['id'], ondelete='SET NULL'
    )

    # Create permissions table (global catalog)
    op.create_table(
        'permissions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(150), nullable=False, unique=True, index=True),
        sa.Column('guard_name', sa.String(50), nullable=False, server_default='api'),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(100), nullable=True, index=True),
        *_timestamps(),
    )

    # Create role_templates table
    op.create_table(
        'role_templates',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False, index=True),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('scope', sa.String(20), nullable=False, server_default='organisation'),
        sa.Column('organisation_id', sa.Integer(), sa.ForeignKey('organisations.id', ondelete='CASCADE'), nullable=True, index=True),
        *_timestamps(),
        sa.UniqueConstraint('name', 'organisation_id', name='uq_role_templates_name_org'),
    )

    # Global template names are unique too (NULLs are distinct in the constraint above)
    op.create_index(
        'uq_role_templates_global_name', 'role_templates', ['name'],
        unique=True, postgresql_where=sa.text('organisation_id IS NULL')
    )

    # Create template_has_permissions pivot
    op.create_table(
        'template_has_permissions',
        sa.Column('role_template_id', sa.Integer(), sa.ForeignKey('role_templates.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    # Create roles table (one per template and organisation)
    op.create_table(
        'roles',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('organisation_id', sa.Integer(), sa.ForeignKey('organisations.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('template_id', sa.Integer(), sa.ForeignKey('role_templates.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('overrides_system', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('system_role_id', sa.Integer(), sa.ForeignKey('roles.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('template_id', 'organisation_id', name='uq_roles_template_org'),
    )

    # Create model_has_roles table
    op.create_table(
        'model_has_roles',
        sa.Column('role_id', sa.Integer(), sa.ForeignKey('roles.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('model_id', sa.Integer(), primary_key=True, index=True),
        sa.Column('model_type', sa.String(100), primary_key=True, server_default='user'),
        sa.Column('organisation_id', sa.Integer(), sa.ForeignKey('organisations.id', ondelete='CASCADE'), primary_key=True, index=True),
        *_timestamps(),
    )

    # Create user_permissions table (grant=false is a deny)
    op.create_table(
        'user_permissions',
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('permission_id', sa.Integer(), sa.ForeignKey('permissions.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('organisation_id', sa.Integer(), sa.ForeignKey('organisations.id', ondelete='CASCADE'), primary_key=True, index=True),
        sa.Column('grant', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table('user_permissions')
    op.drop_table('model_has_roles')
    op.drop_table('roles')
    op.drop_table('template_has_permissions')
    op.drop_index('uq_role_templates_global_name', table_name='role_templates')
    op.drop_table('role_templates')
    op.drop_table('permissions')
    op.drop_constraint('fk_organisations_owner_id', 'organisations', type_='foreignkey')
    op.drop_table('users')
    op.drop_table('organisations')
