from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .contact import InvalidContactFormat, clean_contact, normalize_contact
from .errors import FieldError, ReferenceValidationError

MAX_REFERENCES_PER_BATCH = 10
MAX_NAME_LENGTH = 255


@dataclass(frozen=True)
class ReferenceCandidate:
    """Raw client input for one reference (before trimming / normalization)."""

    reference_name: Optional[str]
    reference_contact: Optional[str]


@dataclass(frozen=True)
class ValidatedReference:
    """Trimmed name + canonical contact, ready for dedup and persistence."""

    reference_name: str
    reference_contact: str


CandidateInput = Union[ReferenceCandidate, Mapping[str, Any]]


def _as_candidate(raw: CandidateInput) -> ReferenceCandidate:
    if isinstance(raw, ReferenceCandidate):
        return raw
    return ReferenceCandidate(
        reference_name=raw.get("reference_name"),
        reference_contact=raw.get("reference_contact"),
    )


def _field(index: int, name: str) -> str:
    return f"references[{index}].{name}"


def validate_references(
    voter_contact: str,
    candidates: Sequence[CandidateInput],
    *,
    limit: int = MAX_REFERENCES_PER_BATCH,
) -> List[ValidatedReference]:
    """
    Validate a batch of proposed references for one voter.

    Rules:
    - batch must hold 1..limit candidates
    - every candidate needs a non-empty name (<= 255 chars after trim) and contact
    - contact must normalize to a national mobile number
    - contact must not be the voter's own number
    - no two candidates may share a normalized contact

    Every problem is collected (no fail-fast) and raised together as one
    ReferenceValidationError. Pure: no I/O.
    """
    items = [_as_candidate(c) for c in (candidates or [])]

    if not items:
        raise ReferenceValidationError([FieldError("references", "At least one reference is required")])

    own_contact = clean_contact(voter_contact)
    errors: List[FieldError] = []
    if len(items) > limit:
        errors.append(FieldError("references", f"Maximum {limit} references allowed"))
    validated: List[ValidatedReference] = []
    # contact -> index of first occurrence, for duplicate reporting
    seen: Dict[str, int] = {}

    for i, item in enumerate(items):
        name = (item.reference_name or "").strip()
        raw_contact = (item.reference_contact or "").strip()
        ok = True

        if not name:
            errors.append(FieldError(_field(i, "reference_name"), "Name is required"))
            ok = False
        elif len(name) > MAX_NAME_LENGTH:
            errors.append(
                FieldError(_field(i, "reference_name"), f"Name must be at most {MAX_NAME_LENGTH} characters")
            )
            ok = False

        if not raw_contact:
            errors.append(FieldError(_field(i, "reference_contact"), "Contact is required"))
            continue

        try:
            contact = normalize_contact(raw_contact)
        except InvalidContactFormat:
            errors.append(FieldError(_field(i, "reference_contact"), "Invalid contact number format"))
            continue

        if contact == own_contact:
            errors.append(
                FieldError(_field(i, "reference_contact"), "Cannot use your own contact number as reference")
            )
            continue

        if contact in seen:
            errors.append(
                FieldError(
                    _field(i, "reference_contact"),
                    f"Duplicate reference contact (same as reference {seen[contact] + 1})",
                )
            )
            continue
        seen[contact] = i

        if ok:
            validated.append(ValidatedReference(reference_name=name, reference_contact=contact))

    if errors:
        raise ReferenceValidationError(errors)

    return validated
