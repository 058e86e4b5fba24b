"""JSON I/O helpers shared by the manifest writer and configuration."""

import json
import os


def load_json(filepath):
    """
    Load and parse a JSON file.

    Args:
        filepath: Path to the JSON file.

    Returns:
        dict: Parsed JSON data.
    """
    with open(filepath, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(filepath, data, indent=2):
    """
    Write a dict to a JSON file, creating parent directories as needed.

    Existing files are overwritten.

    Args:
        filepath: Destination file path.
        data: Dict (or list) to serialize.
        indent: JSON indentation level (default 2).
    """
    parent = os.path.dirname(filepath)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(filepath, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent)
        f.write('\n')
