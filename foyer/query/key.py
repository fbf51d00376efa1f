"""
Foyer — Query Keys
===================

What:  Identifies a cacheable asynchronous operation: a stable name plus
       the canonicalized call arguments.
How:   Arguments are frozen into hashable, value-comparable tuples so that
       ``QueryKey.of("post", {"id": 1})`` and a later call with an equal but
       distinct dict map to the same cache entry.

Canonical forms:
    mapping          → (MAP, ((key, value), ...)) sorted by key
    list / tuple     → (item, ...)
    set / frozenset  → (SET, (item, ...)) sorted
    str/int/float/bool/None/bytes and other hashables → unchanged

Positional arguments are order-sensitive. Keyword arguments are sorted by
name, so ``f(a=1, b=2)`` and ``f(b=2, a=1)`` share an entry.
MAP, SET and KWARGS are private markers no caller argument can equal, so
``{"a": 1}`` never collides with the tuple ``("__map__", (("a", 1),))``.
"""

from dataclasses import dataclass
from typing import Any, Callable, Hashable, Tuple, Union


class _Tag:
    __slots__ = ("name",)

    def __init__(self, name: str):
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.name}>"


MAP = _Tag("map")
SET = _Tag("set")
KWARGS = _Tag("kwargs")


def _sort_key(value: Any) -> Tuple[str, str]:
    return (type(value).__name__, repr(value))


def canonicalize(value: Any) -> Hashable:
    """Freeze ``value`` into a hashable structure with value-equality semantics."""
    if isinstance(value, dict):
        items = [(canonicalize(k), canonicalize(v)) for k, v in value.items()]
        items.sort(key=lambda item: _sort_key(item[0]))
        return (MAP, tuple(items))
    if isinstance(value, (list, tuple)):
        return tuple(canonicalize(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return (SET, tuple(sorted((canonicalize(v) for v in value), key=_sort_key)))
    try:
        hash(value)
    except TypeError:
        raise TypeError(
            f"Query arguments must be hashable or plain containers; got {type(value).__name__}"
        ) from None
    return value


@dataclass(frozen=True)
class QueryKey:
    """Query name plus canonical argument tuple. Hashable and comparable."""

    name: str
    args: Tuple[Hashable, ...] = ()

    @classmethod
    def of(cls, name: str, *args: Any, **kwargs: Any) -> "QueryKey":
        frozen = tuple(canonicalize(arg) for arg in args)
        if kwargs:
            frozen += ((KWARGS, canonicalize(kwargs)),)
        return cls(name=name, args=frozen)

    def __str__(self) -> str:
        if not self.args:
            return self.name
        return f"{self.name}{list(self.args)!r}"


KeyLike = Union[QueryKey, str]
KeyPredicate = Callable[[QueryKey], bool]


def as_key(key: KeyLike) -> QueryKey:
    """Accept either a ``QueryKey`` or a bare name (no arguments)."""
    if isinstance(key, QueryKey):
        return key
    if isinstance(key, str):
        return QueryKey(name=key)
    raise TypeError(f"Expected QueryKey or str, got {type(key).__name__}")
