"""Create tools, agent_tools, and tool_call_logs tables

Revision ID: 001
Revises:
Create Date: 2025-06-02

"""
import os

from alembic import op

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

MIGRATIONS_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "migrations",
)


def _execute_sql_file(filename: str) -> None:
    with open(os.path.join(MIGRATIONS_DIR, filename), 'r') as f:
        op.execute(f.read())


def upgrade() -> None:
    _execute_sql_file("001_tools_schema.sql")
    _execute_sql_file("001_enable_rls_tools.sql")


def downgrade() -> None:
    op.execute("DROP POLICY IF EXISTS tool_call_logs_organization_isolation ON tool_call_logs")
    op.execute("DROP POLICY IF EXISTS tools_organization_isolation ON tools")
    op.execute("DROP TABLE IF EXISTS tool_call_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS agent_tools CASCADE")
    op.execute("DROP TABLE IF EXISTS tools CASCADE")
