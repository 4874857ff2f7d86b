"""create newsletter_issues and newsletter_delivery_tasks tables

Revision ID: c3e5a7b9d1f2
Revises: b2d4f6a8c0e1
Create Date: 2026-10-18 09:20:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "c3e5a7b9d1f2"
down_revision = "b2d4f6a8c0e1"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "newsletter_issues",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("text_content", sa.Text(), nullable=False),
        sa.Column("html_content", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("required_n_tasks", sa.Integer(), nullable=False),
        sa.Column("finished_n_tasks", sa.Integer(), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "finished_n_tasks <= required_n_tasks",
            name="ck_newsletter_issues_finished_le_required",
        ),
    )
    op.create_index("ix_newsletter_issues_status", "newsletter_issues", ["status"])

    op.create_table(
        "newsletter_delivery_tasks",
        sa.Column("newsletter_issue_id", sa.String(length=36), nullable=False),
        sa.Column("subscriber_email", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(
            ["newsletter_issue_id"],
            ["newsletter_issues.id"],
            ondelete="RESTRICT",
        ),
        sa.PrimaryKeyConstraint("newsletter_issue_id", "subscriber_email"),
    )


def downgrade() -> None:
    op.drop_table("newsletter_delivery_tasks")
    op.drop_index("ix_newsletter_issues_status", table_name="newsletter_issues")
    op.drop_table("newsletter_issues")
