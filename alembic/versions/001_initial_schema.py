"""Initial schema: users and auth, taxonomy, challenges, luxicles, social graph.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id() -> sa.Column:  # type: ignore[type-arg]
    return sa.Column("id", sa.String(36), primary_key=True)


def _created_at() -> sa.Column:  # type: ignore[type-arg]
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False)


def _user_fk(name: str, *, nullable: bool = False, ondelete: str = "CASCADE") -> sa.Column:  # type: ignore[type-arg]
    return sa.Column(name, sa.String(36), sa.ForeignKey("users.id", ondelete=ondelete), nullable=nullable)


def upgrade() -> None:
    """Create every table."""
    # --- Users ---
    op.create_table(
        "users",
        _id(),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("username", sa.String(30), nullable=False),
        sa.Column("display_name", sa.String(50), nullable=True),
        sa.Column("bio", sa.String(160), nullable=True),
        sa.Column("location", sa.String(100), nullable=True),
        sa.Column("avatar_url", sa.Text(), nullable=True),
        sa.Column("cover_url", sa.Text(), nullable=True),
        sa.Column("website_url", sa.String(100), nullable=True),
        sa.Column("twitter_handle", sa.String(15), nullable=True),
        sa.Column("instagram_handle", sa.String(30), nullable=True),
        sa.Column("onboarding_completed", sa.Boolean(), server_default="false", nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("username", name="uq_users_username"),
    )
    op.execute("CREATE INDEX ix_users_username_lower ON users (lower(username))")

    # --- Auth ---
    op.create_table(
        "user_credentials",
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("password_hash", sa.String(256), nullable=True),
        sa.Column("email_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sign_in_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )

    op.create_table(
        "oauth_identities",
        _id(),
        _user_fk("user_id"),
        sa.Column("provider", sa.String(32), nullable=False),
        sa.Column("provider_user_id", sa.String(128), nullable=False),
        _created_at(),
        sa.UniqueConstraint("provider", "provider_user_id", name="uq_oauth_identities_provider_user"),
    )
    op.create_index("ix_oauth_identities_user_id", "oauth_identities", ["user_id"])

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.String(64), primary_key=True),
        _user_fk("user_id"),
        sa.Column("token_hash", sa.String(128), nullable=False),
        sa.Column("issued_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_revoked", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("replaced_by", sa.String(64), nullable=True),
    )
    op.create_index("ix_refresh_tokens_user_id", "refresh_tokens", ["user_id"])

    op.create_table(
        "auth_tokens",
        _id(),
        _user_fk("user_id"),
        sa.Column("token_type", sa.String(16), nullable=False),
        sa.Column("token_hash", sa.String(128), nullable=False),
        _created_at(),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("token_hash", name="uq_auth_tokens_token_hash"),
    )
    op.create_index("ix_auth_tokens_user_id_type", "auth_tokens", ["user_id", "token_type"])

    # --- Taxonomy ---
    op.create_table(
        "categories",
        _id(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("slug", name="uq_categories_slug"),
    )

    op.create_table(
        "tags",
        _id(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("usage_count", sa.Integer(), server_default="0", nullable=False),
        _created_at(),
        sa.UniqueConstraint("slug", name="uq_tags_slug"),
    )
    op.create_index("ix_tags_usage_count", "tags", [sa.text("usage_count DESC")])

    # --- Challenges ---
    op.create_table(
        "challenges",
        _id(),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), server_default="", nullable=False),
        sa.Column("rules", sa.Text(), nullable=True),
        sa.Column("category_id", sa.String(36), sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True),
        sa.Column("cover_image_url", sa.Text(), nullable=True),
        sa.Column("opens_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closes_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_featured", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("submission_count", sa.Integer(), server_default="0", nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_challenges_opens_at", "challenges", [sa.text("opens_at DESC")])
    op.create_index("ix_challenges_category_id", "challenges", ["category_id"])

    op.create_table(
        "challenge_tags",
        sa.Column("challenge_id", sa.String(36), sa.ForeignKey("challenges.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("tag_id", sa.String(36), sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    )

    # --- Luxicles ---
    op.create_table(
        "luxicles",
        _id(),
        _user_fk("user_id"),
        sa.Column("challenge_id", sa.String(36), sa.ForeignKey("challenges.id", ondelete="SET NULL"), nullable=True),
        sa.Column("category_id", sa.String(36), sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_published", sa.Boolean(), server_default="false", nullable=False),
        sa.Column("view_count", sa.Integer(), server_default="0", nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_luxicles_user_id", "luxicles", ["user_id"])
    op.create_index("ix_luxicles_challenge_id", "luxicles", ["challenge_id"])
    op.create_index("ix_luxicles_created_at", "luxicles", [sa.text("created_at DESC")])
    op.execute("CREATE INDEX ix_luxicles_title_fts ON luxicles USING GIN (to_tsvector('english', title))")

    op.create_table(
        "luxicle_items",
        _id(),
        sa.Column("luxicle_id", sa.String(36), sa.ForeignKey("luxicles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("media_url", sa.Text(), nullable=True),
        sa.Column("item_type", sa.String(32), server_default="text", nullable=False),
        sa.Column("embed_provider", sa.String(64), nullable=True),
        sa.Column("embed_data", sa.JSON(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_luxicle_items_luxicle_id_position", "luxicle_items", ["luxicle_id", "position"])

    op.create_table(
        "luxicle_tags",
        sa.Column("luxicle_id", sa.String(36), sa.ForeignKey("luxicles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("tag_id", sa.String(36), sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    )

    # --- Social ---
    op.create_table(
        "follows",
        _id(),
        _user_fk("follower_id"),
        _user_fk("followee_id"),
        _created_at(),
        sa.UniqueConstraint("follower_id", "followee_id", name="uq_follows_follower_followee"),
    )
    op.create_index("ix_follows_followee_id", "follows", ["followee_id"])

    op.create_table(
        "comments",
        _id(),
        _user_fk("user_id"),
        sa.Column("luxicle_id", sa.String(36), sa.ForeignKey("luxicles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        _created_at(),
    )
    op.create_index("ix_comments_luxicle_id", "comments", ["luxicle_id"])

    op.create_table(
        "reactions",
        _id(),
        _user_fk("user_id"),
        sa.Column("luxicle_id", sa.String(36), sa.ForeignKey("luxicles.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        _created_at(),
        sa.UniqueConstraint("user_id", "luxicle_id", "kind", name="uq_reactions_user_luxicle_kind"),
    )

    op.create_table(
        "messages",
        _id(),
        _user_fk("sender_id", nullable=True, ondelete="SET NULL"),
        _user_fk("receiver_id", nullable=True, ondelete="SET NULL"),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )
    op.create_index("ix_messages_receiver_id", "messages", ["receiver_id"])

    op.create_table(
        "flags",
        _id(),
        _user_fk("reporter_id", nullable=True, ondelete="SET NULL"),
        sa.Column("luxicle_id", sa.String(36), sa.ForeignKey("luxicles.id", ondelete="CASCADE"), nullable=True),
        sa.Column("reason", sa.String(64), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), server_default="pending", nullable=False),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
    )


def downgrade() -> None:
    """Drop every table, children first."""
    for table in (
        "flags",
        "messages",
        "reactions",
        "comments",
        "follows",
        "luxicle_tags",
        "luxicle_items",
        "luxicles",
        "challenge_tags",
        "challenges",
        "tags",
        "categories",
        "auth_tokens",
        "refresh_tokens",
        "oauth_identities",
        "user_credentials",
        "users",
    ):
        op.drop_table(table)
