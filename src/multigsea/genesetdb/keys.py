"""Compound gene set keys of the form ``collection;;name``."""

from typing import Sequence

GSKEY_SEP = ";;"


def encode_gskey(collection: str | Sequence[str], name: str | Sequence[str]):
    """Encode (collection, name) pairs into ``collection;;name`` keys.

    Accepts either two strings or two parallel sequences of strings.
    """
    if isinstance(collection, str) and isinstance(name, str):
        return f"{collection}{GSKEY_SEP}{name}"
    collection = list(collection)
    name = list(name)
    if len(collection) != len(name):
        raise ValueError(
            f"collection and name lengths differ ({len(collection)} vs {len(name)})"
        )
    return [f"{c}{GSKEY_SEP}{n}" for c, n in zip(collection, name)]


def split_gskey(key: str) -> tuple[str, str]:
    """Split a ``collection;;name`` key back into (collection, name).

    Only the first separator is significant, so gene set names may
    themselves contain ``;;``.
    """
    collection, sep, name = key.partition(GSKEY_SEP)
    if not sep:
        raise ValueError(f"Not a gene set key (missing '{GSKEY_SEP}'): {key!r}")
    return collection, name
