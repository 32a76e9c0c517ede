#!/usr/bin/env python3
"""
Assign bracket slots to registrations stored in a YAML file.

The file holds either a list of registrations or a mapping:

    bracket_size: 4
    registrations:
      - id: r1
        bracket_slot: 1
        created_at: 2026-03-01T10:00:00
      - id: r2
        bracket_slot: null
        created_at: 2026-03-01T10:05:00

Usage:
    python src/repair_slots.py registrations.yaml
    python src/repair_slots.py registrations.yaml --bracket-size 8 --write

Exit codes:
    0: Success
    1: File missing or unreadable
    2: Invalid bracket size or registration data
"""
import argparse
import os
import sys
import yaml
from brackets.slots import apply_repairs, repair_null_slots


def load_registrations_file(file_path):
    """Return (registrations, bracket_size) from a YAML file."""
    with open(file_path, mode='r', encoding='utf-8') as file:
        data = yaml.safe_load(file) or {}
    if isinstance(data, list):
        return data, None
    if not isinstance(data, dict):
        raise ValueError(f"{file_path}: expected a list of registrations or a mapping, got {type(data).__name__}")
    return data.get('registrations', []) or [], data.get('bracket_size')


def main(argv=None):
    parser = argparse.ArgumentParser(description='Assign bracket slots to unassigned registrations.')
    parser.add_argument('file', help='YAML file with registrations')
    parser.add_argument('--bracket-size', type=int, default=None,
                        help='Current bracket size (overrides the file, default 4)')
    parser.add_argument('--write', action='store_true', help='Save the new slots back into the file')
    args = parser.parse_args(argv)

    if not os.path.exists(args.file):
        print(f"Error: File not found: {args.file}", file=sys.stderr)
        return 1
    try:
        registrations, file_bracket_size = load_registrations_file(args.file)
    except (OSError, yaml.YAMLError) as e:
        print(f"Error: Cannot read {args.file}: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    bracket_size = args.bracket_size or file_bracket_size
    try:
        result = repair_null_slots(registrations, bracket_size)
    except (KeyError, TypeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    if not result.repairs:
        print("No unassigned registrations.")
    for repair in result.repairs:
        print(f"{repair.id} -> slot {repair.new_slot}")
    for migration in result.migrations:
        print(f"{migration.id} moved to slot {migration.new_slot}")
    print(f"Bracket size: {result.new_bracket_size}")

    if args.write and (result.repairs or result.migrations):
        apply_repairs(registrations, result)
        with open(args.file, mode='w', encoding='utf-8') as file:
            yaml.dump({'bracket_size': result.new_bracket_size, 'registrations': registrations},
                      file, default_flow_style=False, sort_keys=False)
        print(f"Saved {args.file}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
