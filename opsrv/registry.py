"""Append-only registries of named health and info checks."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar, Union

if TYPE_CHECKING:
    from opsrv.health import HealthResult

HealthCheckHandler = Callable[[], Union["HealthResult", bool, Awaitable[Union["HealthResult", bool]]]]
InfoCheckHandler = Callable[[], Any]


@dataclass(frozen=True)
class HealthCheck:
    name: str
    handler: HealthCheckHandler


@dataclass(frozen=True)
class InfoCheck:
    name: str
    handler: InfoCheckHandler


CheckT = TypeVar("CheckT", HealthCheck, InfoCheck)


class CheckRegistry(Generic[CheckT]):
    """Ordered collection of checks, in registration order.

    Names are not validated or deduplicated: a later check registered under
    an existing name overwrites the earlier one in aggregated output.
    Iterating yields a snapshot, so checks added while a request is being
    served only show up in later requests.
    """

    def __init__(self, factory: Callable[[str, Any], CheckT]) -> None:
        self._factory = factory
        self._checks: tuple[CheckT, ...] = ()

    def add(self, name: str, handler: Any) -> None:
        # Rebinding a new tuple keeps in-flight snapshots untouched.
        self._checks = self._checks + (self._factory(name, handler),)

    def snapshot(self) -> tuple[CheckT, ...]:
        return self._checks

    def __iter__(self) -> Iterator[CheckT]:
        return iter(self._checks)

    def __len__(self) -> int:
        return len(self._checks)

    def __bool__(self) -> bool:
        return bool(self._checks)


def health_registry() -> CheckRegistry[HealthCheck]:
    return CheckRegistry(HealthCheck)


def info_registry() -> CheckRegistry[InfoCheck]:
    return CheckRegistry(InfoCheck)
