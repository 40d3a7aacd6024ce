"""Manually add (or refresh) a candidate record.

Usage:
    DATABASE_URL=... uv run python scripts/add_candidate.py "Full Name" "+79991234567"

The phone is stored raw and keyed by its normalized form, so a later
lookup-candidate call with "8 999 123-45-67" finds the same record.
Run migrations first (alembic upgrade head).
"""

from __future__ import annotations

import os
import sys


def main() -> None:
    if len(sys.argv) < 3:
        print('Usage: uv run python scripts/add_candidate.py "Full Name" "+79991234567"')
        sys.exit(2)

    name, phone = sys.argv[1].strip(), sys.argv[2].strip()
    if not name or not phone:
        print("ERROR: name and phone must be non-empty")
        sys.exit(2)

    if not os.environ.get("DATABASE_URL"):
        print("ERROR: DATABASE_URL not set")
        sys.exit(1)

    from intakebot.domain.phone import normalize_phone
    from intakebot.infra.db import txn
    from intakebot.infra.repositories.candidates_repository import save_candidate

    with txn() as cur:
        candidate_id, created = save_candidate(cur, name=name, phone=phone)

    action = "Added" if created else "Updated"
    print(f"{action} candidate: id={candidate_id} name={name} phone={normalize_phone(phone)}")


if __name__ == "__main__":
    main()
