"""Initial schema: merchants, credentials, tool templates, AI configurations

Revision ID: 001
Revises:
Create Date: 2025-01-16

"""
from alembic import op

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE merchants (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            display_name TEXT,
            currency_symbol TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    op.execute("""
        CREATE TABLE credentials (
            id TEXT PRIMARY KEY,
            merchant_id TEXT NOT NULL REFERENCES merchants(id) ON DELETE CASCADE,
            auth_type TEXT NOT NULL DEFAULT 'none',
            secret TEXT,
            username TEXT,
            password TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX idx_credentials_merchant ON credentials (merchant_id)")

    op.execute("""
        CREATE TABLE tool_templates (
            id TEXT PRIMARY KEY,
            merchant_id TEXT NOT NULL REFERENCES merchants(id) ON DELETE CASCADE,
            tool_type TEXT NOT NULL,
            name TEXT,
            description TEXT,
            method TEXT NOT NULL DEFAULT 'POST',
            url TEXT NOT NULL DEFAULT '',
            headers JSONB NOT NULL DEFAULT '[]'::jsonb,
            query_params JSONB NOT NULL DEFAULT '[]'::jsonb,
            body JSONB,
            operator_mcp_config JSONB,
            credential_id TEXT REFERENCES credentials(id) ON DELETE SET NULL,
            timeout_seconds DOUBLE PRECISION,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)
    op.execute("CREATE INDEX idx_tool_templates_merchant ON tool_templates (merchant_id, is_active)")
    # Built-in tool types are unique per merchant; custom_* types may repeat
    op.execute("""
        CREATE UNIQUE INDEX uq_tool_templates_builtin_type
        ON tool_templates (merchant_id, tool_type)
        WHERE tool_type NOT LIKE 'custom_%'
    """)

    op.execute("""
        CREATE TABLE ai_configurations (
            merchant_id TEXT PRIMARY KEY REFERENCES merchants(id) ON DELETE CASCADE,
            provider TEXT NOT NULL DEFAULT 'gemini',
            api_key TEXT,
            model TEXT,
            temperature DOUBLE PRECISION NOT NULL DEFAULT 0.1,
            max_output_tokens INTEGER NOT NULL DEFAULT 4096,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS ai_configurations CASCADE")
    op.execute("DROP TABLE IF EXISTS tool_templates CASCADE")
    op.execute("DROP TABLE IF EXISTS credentials CASCADE")
    op.execute("DROP TABLE IF EXISTS merchants CASCADE")
