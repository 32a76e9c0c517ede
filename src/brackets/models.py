from datetime import datetime, timezone

EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def parse_timestamp(value):
    """Return an aware datetime for a datetime or ISO-8601 string. Naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Registration:
    def __init__(self, id, bracket_slot=None, created_at=None):
        self.id = id
        self.bracket_slot = bracket_slot
        self.created_at = parse_timestamp(created_at) if created_at is not None else EARLIEST

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            bracket_slot=data.get('bracket_slot'),
            created_at=data.get('created_at'),
        )

    def __repr__(self):
        return f"Registration(id={self.id}, bracket_slot={self.bracket_slot}, created_at={self.created_at})"


class SlotRepair:
    def __init__(self, id, new_slot):
        self.id = id
        self.new_slot = new_slot

    def to_dict(self):
        return {'id': self.id, 'new_slot': self.new_slot}

    def __eq__(self, other):
        if not isinstance(other, SlotRepair):
            return NotImplemented
        return self.id == other.id and self.new_slot == other.new_slot

    def __repr__(self):
        return f"SlotRepair(id={self.id}, new_slot={self.new_slot})"


class RepairResult:
    def __init__(self, repairs, final_slots, new_bracket_size, migrations=None):
        self.repairs = repairs
        self.final_slots = final_slots
        self.new_bracket_size = new_bracket_size
        self.migrations = migrations if migrations else []  # Slots that moved because the bracket grew

    def to_dict(self):
        return {
            'repairs': [r.to_dict() for r in self.repairs],
            'final_slots': list(self.final_slots),
            'new_bracket_size': self.new_bracket_size,
            'migrations': [m.to_dict() for m in self.migrations],
        }

    def __repr__(self):
        return (f"RepairResult(repairs={self.repairs}, final_slots={self.final_slots}, "
                f"new_bracket_size={self.new_bracket_size}, migrations={self.migrations})")
