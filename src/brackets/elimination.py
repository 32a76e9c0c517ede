"""
Single elimination match generation from assigned bracket slots.
"""
import math
from typing import List, Dict


def get_round_name(competitors_in_round: int) -> str:
    """Get the name of a round based on number of competitors."""
    if competitors_in_round == 2:
        return "Final"
    elif competitors_in_round == 4:
        return "Semifinal"
    elif competitors_in_round == 8:
        return "Quarterfinal"
    else:
        return f"Round of {competitors_in_round}"


def calculate_total_rounds(bracket_size: int) -> int:
    """Number of rounds needed to reduce bracket_size competitors to one."""
    if bracket_size < 2:
        return 0
    return int(math.log2(bracket_size))


def build_matches_from_slots(bracket_size: int, slotted: List[Dict], is_preview: bool = False) -> List[Dict]:
    """
    Build every match of a bracket from slot assignments.

    slotted is a list of dicts with 'bracket_slot', 'athlete_id' and
    'athlete_name'. First round pairs slot 1 vs 2, 3 vs 4, etc. A pair with
    an empty side is a bye and is already completed, with the present
    athlete as winner. Later rounds are empty placeholders.

    Returns list of match dicts with:
    - round / round_name / match_no
    - slot_a, slot_b (0 for later rounds)
    - athlete_a_id, athlete_b_id, athlete_a_name, athlete_b_name
    - winner_id, is_bye, status, is_preview
    """
    slot_to_athlete = {}
    for entry in slotted:
        if entry.get('bracket_slot'):
            slot_to_athlete[entry['bracket_slot']] = entry

    matches = []
    match_no = 1

    for slot_a in range(1, bracket_size + 1, 2):
        slot_b = slot_a + 1
        athlete_a = slot_to_athlete.get(slot_a)
        athlete_b = slot_to_athlete.get(slot_b)

        is_bye = athlete_a is None or athlete_b is None
        winner_id = None
        if is_bye:
            present = athlete_a or athlete_b
            winner_id = present['athlete_id'] if present else None

        matches.append({
            'round': 1,
            'round_name': get_round_name(bracket_size),
            'match_no': match_no,
            'slot_a': slot_a,
            'slot_b': slot_b,
            'athlete_a_id': athlete_a['athlete_id'] if athlete_a else None,
            'athlete_b_id': athlete_b['athlete_id'] if athlete_b else None,
            'athlete_a_name': athlete_a.get('athlete_name', '') if athlete_a else '',
            'athlete_b_name': athlete_b.get('athlete_name', '') if athlete_b else '',
            'winner_id': winner_id,
            'is_bye': is_bye,
            'status': 'completed' if is_bye else 'pending',
            'is_preview': is_preview
        })
        match_no += 1

    # Later rounds are filled in as results come in
    for round_num in range(2, calculate_total_rounds(bracket_size) + 1):
        competitors_in_round = bracket_size // (2 ** (round_num - 1))
        for _ in range(competitors_in_round // 2):
            matches.append({
                'round': round_num,
                'round_name': get_round_name(competitors_in_round),
                'match_no': match_no,
                'slot_a': 0,
                'slot_b': 0,
                'athlete_a_id': None,
                'athlete_b_id': None,
                'athlete_a_name': '',
                'athlete_b_name': '',
                'winner_id': None,
                'is_bye': False,
                'status': 'pending',
                'is_preview': is_preview
            })
            match_no += 1

    return matches


def get_bracket_display(bracket_size: int, slotted: List[Dict], is_preview: bool = True) -> Dict:
    """
    Get bracket data formatted for display.

    Returns dict with:
    - 'rounds': dict of round_name -> list of matches, in play order
    - 'bracket_size': total bracket size
    - 'total_rounds': number of rounds
    - 'byes': number of empty first-round positions
    """
    matches = build_matches_from_slots(bracket_size, slotted, is_preview)
    rounds = {}
    for match in matches:
        rounds.setdefault(match['round_name'], []).append(match)

    occupied = {entry['bracket_slot'] for entry in slotted if entry.get('bracket_slot')}
    return {
        'rounds': rounds,
        'bracket_size': bracket_size,
        'total_rounds': calculate_total_rounds(bracket_size),
        'byes': bracket_size - len([s for s in occupied if 1 <= s <= bracket_size])
    }
