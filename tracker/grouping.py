from typing import Callable, Dict, Hashable, Iterable, List, TypeVar

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)


def group_by(items: Iterable[T], key: Callable[[T], K]) -> Dict[K, List[T]]:
    """
    Single grouping pass over a complete record set.
    Groups appear in order of first occurrence; members keep input order.
    """
    groups: Dict[K, List[T]] = {}
    for item in items:
        groups.setdefault(key(item), []).append(item)
    return groups
