"""Stable grouping of schedule records."""

from typing import Callable, Dict, Hashable, Iterable, List, TypeVar

T = TypeVar('T')
K = TypeVar('K', bound=Hashable)


def group_by(records: Iterable[T], key_fn: Callable[[T], K]) -> Dict[K, List[T]]:
    """Group records by ``key_fn``.

    Keys appear in first-seen order and each group keeps the input order of
    its records.
    """
    groups: Dict[K, List[T]] = {}
    for record in records:
        groups.setdefault(key_fn(record), []).append(record)
    return groups
