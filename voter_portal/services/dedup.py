from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Sequence

from ..models.reference import Reference
from .reference_store import ReferenceStore
from .reference_validator import ValidatedReference


@dataclass(frozen=True)
class DedupResult:
    """
    Outcome of checking a validated batch against what the voter already has.

    Skipped entries are a normal outcome (idempotent resubmission), not an error.
    """

    to_create: List[ValidatedReference] = field(default_factory=list)
    skipped: List[Reference] = field(default_factory=list)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def partition_existing(
    store: ReferenceStore,
    user_id: str,
    validated: Sequence[ValidatedReference],
) -> DedupResult:
    """
    Split `validated` into contacts the voter has not nominated yet (to_create)
    and the rows that already exist for the rest (skipped). One read.
    """
    existing = store.find_existing(user_id, [v.reference_contact for v in validated])
    existing_contacts = {r.reference_contact for r in existing}

    to_create = [v for v in validated if v.reference_contact not in existing_contacts]
    return DedupResult(to_create=to_create, skipped=existing)
