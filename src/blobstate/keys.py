from __future__ import annotations


KEY_DELIMITER = "||"


def map_key(key: str) -> str:
    """Return the storage object name for a logical state key.

    Keys of the form "<prefix>||<name>" map to "<name>"; the prefix is
    reserved for caller-side namespacing and is not part of the object path.
    Any other key (no delimiter, or more than one) is used verbatim.
    """
    parts = key.split(KEY_DELIMITER)
    if len(parts) != 2:
        return key
    return parts[1]
