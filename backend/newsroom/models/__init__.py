from .kv import KeyValueEntry, SetMember, SortedSetMember

__all__ = [
    "KeyValueEntry",
    "SetMember",
    "SortedSetMember",
]
