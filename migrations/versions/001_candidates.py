"""Candidates table for returning-vs-new lookup.

Creates candidates if missing, adds normalized_phone to tables created
before it existed, and backfills it with the same normalize_phone() the
application uses so stored keys match lookups.

normalized_phone is unique among non-empty values. Legacy duplicates are
merged before the index is built: the oldest row survives and takes the
name and raw phone of the newest one.

Revision ID: 001_candidates
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

from intakebot.domain.phone import normalize_phone


# revision identifiers, used by Alembic.
revision = "001_candidates"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE IF NOT EXISTS candidates (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL,
            phone TEXT NOT NULL,
            normalized_phone TEXT NOT NULL DEFAULT '',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        "ALTER TABLE candidates ADD COLUMN IF NOT EXISTS normalized_phone TEXT NOT NULL DEFAULT ''"
    )

    conn = op.get_bind()
    rows = conn.execute(
        sa.text(
            """
            SELECT id, phone FROM candidates
            WHERE (normalized_phone IS NULL OR normalized_phone = '')
              AND phone IS NOT NULL
            """
        )
    ).fetchall()
    update = sa.text("UPDATE candidates SET normalized_phone = :normalized WHERE id = :id")
    for candidate_id, phone in rows:
        conn.execute(update, {"normalized": normalize_phone(phone), "id": candidate_id})

    # Merge duplicates: newest name/phone onto the oldest row, then drop the rest
    op.execute(
        """
        UPDATE candidates AS keep
        SET name = latest.name,
            phone = latest.phone
        FROM (
            SELECT DISTINCT ON (normalized_phone) normalized_phone, name, phone
            FROM candidates
            WHERE normalized_phone <> ''
            ORDER BY normalized_phone, id DESC
        ) AS latest
        WHERE keep.normalized_phone = latest.normalized_phone
          AND keep.id = (
              SELECT min(id) FROM candidates c
              WHERE c.normalized_phone = latest.normalized_phone
          )
          AND EXISTS (
              SELECT 1 FROM candidates d
              WHERE d.normalized_phone = keep.normalized_phone
                AND d.id <> keep.id
          )
        """
    )
    op.execute(
        """
        DELETE FROM candidates AS dup
        USING candidates AS keep
        WHERE dup.normalized_phone = keep.normalized_phone
          AND dup.normalized_phone <> ''
          AND dup.id > keep.id
        """
    )

    op.execute("DROP INDEX IF EXISTS idx_candidates_normalized_phone")
    op.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_candidates_normalized_phone
        ON candidates (normalized_phone)
        WHERE normalized_phone <> ''
        """
    )


def downgrade() -> None:
    raise NotImplementedError("Downgrade not supported")
