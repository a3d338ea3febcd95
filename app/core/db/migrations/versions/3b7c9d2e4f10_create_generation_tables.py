"""create users, tags, generations, candidates, flashcards and error logs

Revision ID: 3b7c9d2e4f10
Revises:
Create Date: 2026-10-19 10:12:41.382911

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7c9d2e4f10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


generation_status = sa.Enum(
    "pending", "running", "succeeded", "failed", "cancelled", name="generation_status"
)
candidate_status = sa.Enum(
    "proposed", "edited", "accepted", "rejected", name="candidate_status"
)
card_origin = sa.Enum("manual", "ai-full", "ai-edited", name="card_origin")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Create the generation pipeline schema."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("hashed_password", sa.String(length=1024), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_superuser", sa.Boolean(), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)
    op.create_index(op.f("ix_users_id"), "users", ["id"], unique=False)

    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("slug", sa.String(length=64), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )
    op.create_index(op.f("ix_tags_id"), "tags", ["id"], unique=False)

    op.create_table(
        "generations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("status", generation_status, nullable=False),
        sa.Column("sanitized_input_text", sa.Text(), nullable=False),
        sa.Column("sanitized_input_length", sa.Integer(), nullable=True),
        sa.Column("sanitized_input_sha256", sa.String(length=64), nullable=True),
        sa.Column("temperature", sa.Float(), nullable=True),
        sa.Column("prompt_tokens", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("error_code", sa.String(length=64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_generations_user_id"), "generations", ["user_id"], unique=False
    )
    op.create_index(
        op.f("ix_generations_status"), "generations", ["status"], unique=False
    )
    op.create_index(
        op.f("ix_generations_created_at"), "generations", ["created_at"], unique=False
    )
    op.create_index(
        "generations_active_per_user_unique",
        "generations",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'running')"),
    )

    op.create_table(
        "flashcards",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("front", sa.String(length=200), nullable=False),
        sa.Column("back", sa.String(length=500), nullable=False),
        sa.Column("origin", card_origin, nullable=False),
        sa.Column("front_back_fingerprint", sa.String(length=64), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_flashcards_owner_id"), "flashcards", ["owner_id"], unique=False
    )
    op.create_index(
        op.f("ix_flashcards_front_back_fingerprint"),
        "flashcards",
        ["front_back_fingerprint"],
        unique=False,
    )
    op.create_index(
        "flashcards_owner_fingerprint_unique",
        "flashcards",
        ["owner_id", "front_back_fingerprint"],
        unique=True,
        postgresql_where=sa.text("deleted_at IS NULL"),
    )

    op.create_table(
        "card_tags",
        sa.Column("card_id", sa.Uuid(), nullable=False),
        sa.Column("tag_id", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=True,
        ),
        sa.ForeignKeyConstraint(["card_id"], ["flashcards.id"]),
        sa.ForeignKeyConstraint(["tag_id"], ["tags.id"]),
        sa.PrimaryKeyConstraint("card_id", "tag_id"),
    )

    op.create_table(
        "generation_candidates",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("generation_id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("front", sa.String(length=200), nullable=False),
        sa.Column("back", sa.String(length=500), nullable=False),
        sa.Column("front_back_fingerprint", sa.String(length=64), nullable=True),
        sa.Column("status", candidate_status, nullable=False),
        sa.Column("accepted_card_id", sa.Uuid(), nullable=True),
        sa.Column("suggested_category_id", sa.Integer(), nullable=True),
        sa.Column(
            "suggested_tags",
            sa.JSON(),
            server_default=sa.text("'[]'"),
            nullable=False,
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["generation_id"], ["generations.id"]),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["accepted_card_id"], ["flashcards.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("accepted_card_id"),
    )
    op.create_index(
        op.f("ix_generation_candidates_generation_id"),
        "generation_candidates",
        ["generation_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_generation_candidates_owner_id"),
        "generation_candidates",
        ["owner_id"],
        unique=False,
    )

    op.create_table(
        "generation_error_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("model", sa.String(), nullable=False),
        sa.Column("error_code", sa.String(length=64), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("source_text_hash", sa.String(length=64), nullable=False),
        sa.Column("source_text_length", sa.Integer(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_generation_error_logs_id"),
        "generation_error_logs",
        ["id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_generation_error_logs_user_id"),
        "generation_error_logs",
        ["user_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_generation_error_logs_created_at"),
        "generation_error_logs",
        ["created_at"],
        unique=False,
    )


def downgrade() -> None:
    """Drop the generation pipeline schema."""
    op.drop_table("generation_error_logs")
    op.drop_table("generation_candidates")
    op.drop_table("card_tags")
    op.drop_table("flashcards")
    op.drop_table("generations")
    op.drop_table("tags")
    op.drop_index(op.f("ix_users_id"), table_name="users")
    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    card_origin.drop(bind, checkfirst=True)
    candidate_status.drop(bind, checkfirst=True)
    generation_status.drop(bind, checkfirst=True)
