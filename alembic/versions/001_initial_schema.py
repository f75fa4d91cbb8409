"""Initial schema: projects, requirements, collections, external docs, user profiles.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _audit_columns() -> list:
    return [
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
        sa.Column('created_by', sa.String(255)),
        sa.Column('updated_by', sa.String(255)),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
    ]


def upgrade() -> None:
    op.create_table(
        'projects',
        *_audit_columns(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('status', sa.Enum('draft', 'active', 'on_hold', 'completed', 'archived', name='project_status'), nullable=False, server_default='active'),
        sa.Column('start_date', sa.DateTime(timezone=True)),
        sa.Column('target_end_date', sa.DateTime(timezone=True)),
        sa.Column('actual_end_date', sa.DateTime(timezone=True)),
        sa.Column('tags', postgresql.JSONB),
        sa.Column('metadata', postgresql.JSONB),
    )
    op.create_index('idx_projects_created_by', 'projects', ['created_by'])

    op.create_table(
        'requirements',
        *_audit_columns(),
        # No ON DELETE CASCADE: project deletion removes requirements explicitly so each removal is observable
        sa.Column('project_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('projects.id')),
        sa.Column('parent_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('requirements.id')),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('acceptance_criteria', postgresql.JSONB),
        sa.Column('priority', sa.Enum('critical', 'high', 'medium', 'low', name='requirement_priority'), nullable=False, server_default='medium'),
        sa.Column('status', sa.Enum('draft', 'pending_review', 'approved', 'in_progress', 'testing', 'completed', 'rejected', name='requirement_status'), nullable=False, server_default='draft'),
        sa.Column('assigned_to', sa.String(255)),
        sa.Column('reviewer', sa.String(255)),
        sa.Column('tags', postgresql.JSONB),
        sa.Column('original_req', sa.Text),
        sa.Column('current_req', postgresql.JSONB),
        sa.Column('history_req', postgresql.JSONB),
        sa.Column('rewritten_ears', sa.Text),
        sa.Column('rewritten_incose', sa.Text),
        sa.Column('selected_format', sa.String(50)),
        sa.Column('metadata', postgresql.JSONB),
    )
    op.create_index('idx_requirements_project', 'requirements', ['project_id'])
    op.create_index('idx_requirements_parent', 'requirements', ['parent_id'])
    op.create_index('idx_requirements_created_by', 'requirements', ['created_by'])

    op.create_table(
        'collections',
        *_audit_columns(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('parent_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('collections.id')),
        sa.Column('access_level', sa.Enum('private', 'project', 'organization', 'public', name='access_level'), nullable=False, server_default='private'),
        sa.Column('tags', postgresql.JSONB),
    )
    op.create_index('idx_collections_parent', 'collections', ['parent_id'])
    op.create_index('idx_collections_created_by', 'collections', ['created_by'])

    op.create_table(
        'external_docs',
        *_audit_columns(),
        sa.Column('collection_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('collections.id')),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('url', sa.Text, nullable=False),
        sa.Column('type', sa.Enum('specification', 'reference', 'documentation', 'standard', 'guideline', 'report', name='document_type'), nullable=False),
        sa.Column('version_info', sa.String(100)),
        sa.Column('author', sa.String(255)),
        sa.Column('publication_date', sa.DateTime(timezone=True)),
        sa.Column('last_verified_date', sa.DateTime(timezone=True)),
        sa.Column('status', sa.String(50), nullable=False, server_default='active'),
        sa.Column('tags', postgresql.JSONB),
    )
    op.create_index('idx_external_docs_collection', 'external_docs', ['collection_id'])
    op.create_index('idx_external_docs_type', 'external_docs', ['type'])
    op.create_index('idx_external_docs_created_by', 'external_docs', ['created_by'])

    op.create_table(
        'user_profiles',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('firebase_uid', sa.String(255), nullable=False, unique=True),
        sa.Column('supabase_uid', sa.String(255)),
        sa.Column('email', sa.String(255)),
        sa.Column('display_name', sa.String(255)),
        sa.Column('avatar_url', sa.Text),
        sa.Column('job_title', sa.String(255)),
        sa.Column('department', sa.String(255)),
        sa.Column('theme', sa.Enum('light', 'dark', 'system', name='user_theme'), nullable=False, server_default='system'),
        sa.Column('notification_preferences', sa.Enum('all', 'important', 'none', name='notification_preference'), nullable=False, server_default='important'),
        sa.Column('email_notifications', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('timezone', sa.String(100)),
        sa.Column('bio', sa.Text),
        sa.Column('tags', postgresql.JSONB),
        sa.Column('created_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True)),
    )
    op.create_index('idx_user_profiles_firebase_uid', 'user_profiles', ['firebase_uid'])
    op.create_index('idx_user_profiles_supabase_uid', 'user_profiles', ['supabase_uid'])


def downgrade() -> None:
    # Drop tables
    op.drop_table('user_profiles')
    op.drop_table('external_docs')
    op.drop_table('collections')
    op.drop_table('requirements')
    op.drop_table('projects')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS notification_preference')
    op.execute('DROP TYPE IF EXISTS user_theme')
    op.execute('DROP TYPE IF EXISTS document_type')
    op.execute('DROP TYPE IF EXISTS access_level')
    op.execute('DROP TYPE IF EXISTS requirement_status')
    op.execute('DROP TYPE IF EXISTS requirement_priority')
    op.execute('DROP TYPE IF EXISTS project_status')
