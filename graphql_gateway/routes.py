"""
Route registry.

Routes are collected at startup and frozen once the server builds its
dispatch table. Order is insertion order; paths are unique.
"""

from typing import Callable, Iterator, List, NamedTuple

from flask.typing import ResponseReturnValue


class RouteError(Exception):
    """Base class for registry errors."""


class DuplicateRouteError(RouteError, ValueError):
    """Raised when a path is registered twice."""


class RegistryFrozenError(RouteError, RuntimeError):
    """Raised when registering after the dispatch table was built."""


class Route(NamedTuple):
    path: str
    handler: Callable[..., ResponseReturnValue]


class RouteRegistry:
    """Ordered (path, handler) collection"""

    def __init__(self):
        self._routes: List[Route] = []
        self._frozen = False

    def register(self, path: str, handler: Callable[..., ResponseReturnValue]) -> Route:
        if self._frozen:
            raise RegistryFrozenError(f"cannot register {path!r}: registry is frozen")
        if any(route.path == path for route in self._routes):
            raise DuplicateRouteError(f"route already registered: {path!r}")

        route = Route(path, handler)
        self._routes.append(route)
        return route

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __iter__(self) -> Iterator[Route]:
        return iter(tuple(self._routes))

    def __len__(self) -> int:
        return len(self._routes)

    def __contains__(self, path: object) -> bool:
        return any(route.path == path for route in self._routes)
