"""
Bracket slot allocation for single elimination categories.

Competitors are placed on first-round positions 1..bracket_size in
registration order. When a bracket is full it doubles, and every occupied
slot moves to ``slot * 2 - 1`` so earlier competitors keep their relative
order on the odd positions while the even positions open up for newcomers.
"""
from typing import Dict, Iterable, List, Optional

from brackets.models import Registration, RepairResult, SlotRepair

DEFAULT_BRACKET_SIZE = 4
MIN_BRACKET_SIZE = 2


def is_power_of_two(n: int) -> bool:
    """Check whether n is a positive power of two."""
    return isinstance(n, int) and n > 0 and (n & (n - 1)) == 0


def _check_bracket_size(bracket_size: int, label: str = 'bracket_size'):
    if not is_power_of_two(bracket_size) or bracket_size < MIN_BRACKET_SIZE:
        raise ValueError(f"{label} must be a power of two >= {MIN_BRACKET_SIZE}, got {bracket_size!r}")


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n, never less than 2."""
    if n <= MIN_BRACKET_SIZE:
        return MIN_BRACKET_SIZE
    return 1 << (n - 1).bit_length()


def migrate_slots(old_slots: Iterable[int], old_size: int, new_size: int) -> Dict[int, int]:
    """
    Map each slot of a bracket of old_size onto a bracket of new_size.

    The bracket grows one doubling at a time and ``s * 2 - 1`` is applied to
    the already migrated value at every step, e.g. 4 -> 16 sends slot 2 to
    3 and then to 5. Distinct slots stay distinct and keep their order.
    """
    _check_bracket_size(old_size, 'old_size')
    _check_bracket_size(new_size, 'new_size')
    if new_size < old_size:
        raise ValueError(f"Bracket cannot shrink from {old_size} to {new_size}")

    migration = {slot: slot for slot in old_slots}
    current_size = old_size
    while current_size < new_size:
        migration = {old: (current * 2) - 1 for old, current in migration.items()}
        current_size *= 2
    return migration


def find_next_available_slot(occupied_slots: Iterable[int], bracket_size: int) -> Optional[int]:
    """Lowest free slot in 1..bracket_size, or None when the bracket is full."""
    _check_bracket_size(bracket_size)
    occupied = set(occupied_slots)
    for slot in range(1, bracket_size + 1):
        if slot not in occupied:
            return slot
    return None


def _as_registration(item) -> Registration:
    if isinstance(item, Registration):
        return item
    return Registration.from_dict(item)


def repair_null_slots(registrations: Iterable, bracket_size: Optional[int] = None) -> RepairResult:
    """
    Assign slots to registrations that have none.

    Registrations (``Registration`` objects or dicts with ``id``,
    ``bracket_slot`` and ``created_at``) are processed oldest first; ties keep
    the caller's order. Each unassigned registration takes the lowest free
    slot. A full bracket doubles, remapping every occupied slot, including
    the ones handed out earlier in this call.

    Returns a RepairResult with:
    - repairs: new slots for registrations that had none
    - final_slots: every occupied slot, ascending
    - new_bracket_size: size after any growth
    - migrations: new slots for already assigned registrations moved by growth
    """
    initial_size = bracket_size or DEFAULT_BRACKET_SIZE
    _check_bracket_size(initial_size)

    ordered = sorted((_as_registration(r) for r in registrations), key=lambda r: r.created_at)
    assigned = [r for r in ordered if r.bracket_slot is not None]
    unassigned = [r for r in ordered if r.bracket_slot is None]

    occupied = {r.bracket_slot for r in assigned}
    repairs: List[SlotRepair] = []
    current_size = initial_size

    for registration in unassigned:
        next_slot = find_next_available_slot(occupied, current_size)
        while next_slot is None:
            current_size *= 2
            occupied = {(slot * 2) - 1 for slot in occupied}
            for repair in repairs:
                repair.new_slot = (repair.new_slot * 2) - 1
            next_slot = find_next_available_slot(occupied, current_size)

        repairs.append(SlotRepair(registration.id, next_slot))
        occupied.add(next_slot)

    migrations = []
    if current_size > initial_size and assigned:
        mapping = migrate_slots({r.bracket_slot for r in assigned}, initial_size, current_size)
        migrations = [
            SlotRepair(r.id, mapping[r.bracket_slot])
            for r in assigned
            if mapping[r.bracket_slot] != r.bracket_slot
        ]

    return RepairResult(
        repairs=repairs,
        final_slots=sorted(occupied),
        new_bracket_size=current_size,
        migrations=migrations,
    )


def apply_repairs(registrations: List[Dict], result: RepairResult) -> List[Dict]:
    """Write repaired and migrated slots back onto registration dicts."""
    new_slots = {change.id: change.new_slot for change in result.migrations + result.repairs}
    for registration in registrations:
        if registration['id'] in new_slots:
            registration['bracket_slot'] = new_slots[registration['id']]
    return registrations
