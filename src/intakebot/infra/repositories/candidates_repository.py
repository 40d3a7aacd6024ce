"""Candidates repository - returning-vs-new lookup for the intake flow.

Uses raw SQL with psycopg2 (no ORM).

normalized_phone is always computed here with normalize_phone(), never by
SQL, so lookups and stored keys agree byte for byte.

Save strategy
─────────────
  One INSERT ... ON CONFLICT against the unique partial index on
  normalized_phone (non-empty values only):
  - new phone → row inserted; return (candidate_id, created=True).
  - known phone → name and raw phone refreshed; return (candidate_id, created=False).
  Two concurrent submits for the same phone therefore land on one row.
  A phone that normalizes to '' is outside the index and always inserts.

The caller runs this inside a transaction (with txn() as cur:).
"""

from dataclasses import dataclass
from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

from intakebot.domain.phone import normalize_phone


@dataclass(frozen=True)
class CandidateRecord:
    id: int
    name: str
    phone: str
    created_at: datetime | None


def _to_record(row: tuple | None) -> CandidateRecord | None:
    if row is None:
        return None
    return CandidateRecord(id=row[0], name=row[1], phone=row[2], created_at=row[3])


def save_candidate(cur: PgCursor, *, name: str, phone: str) -> tuple[int, bool]:
    """Create or refresh the candidate record for a phone.

    Returns:
        Tuple of (candidate_id, created).
    """
    normalized = normalize_phone(phone)

    if not normalized:
        cur.execute(
            """
            INSERT INTO candidates (name, phone, normalized_phone)
            VALUES (%s, %s, '')
            RETURNING id
            """,
            (name.strip(), phone),
        )
        row = cur.fetchone()
        return (row[0], True)

    # xmax is 0 only on a freshly inserted tuple
    cur.execute(
        """
        INSERT INTO candidates (name, phone, normalized_phone)
        VALUES (%s, %s, %s)
        ON CONFLICT (normalized_phone) WHERE normalized_phone <> ''
        DO UPDATE SET name = EXCLUDED.name,
                      phone = EXCLUDED.phone
        RETURNING id, (xmax = 0) AS created
        """,
        (name.strip(), phone, normalized),
    )
    row = cur.fetchone()
    return (row[0], bool(row[1]))


def find_candidate_by_phone(cur: PgCursor, phone: str) -> CandidateRecord | None:
    normalized = normalize_phone(phone)
    if not normalized:
        return None
    cur.execute(
        """
        SELECT id, name, phone, created_at
        FROM candidates
        WHERE normalized_phone = %s
        ORDER BY id
        LIMIT 1
        """,
        (normalized,),
    )
    return _to_record(cur.fetchone())


def find_candidate_by_name(cur: PgCursor, name: str) -> CandidateRecord | None:
    """Exact match on the trimmed name (no fuzzy matching)."""
    trimmed = name.strip()
    if not trimmed:
        return None
    cur.execute(
        """
        SELECT id, name, phone, created_at
        FROM candidates
        WHERE trim(name) = %s
        ORDER BY id
        LIMIT 1
        """,
        (trimmed,),
    )
    return _to_record(cur.fetchone())
