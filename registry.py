# registry.py

import logging
from types import MappingProxyType
from typing import Iterator, Mapping, Optional

from models.repository import Repository

logger = logging.getLogger(__name__)


class Registry:
    """
    Repositories keyed by routing name, the URL segment in /update/<routing name>.

    Built once at startup and read-only afterwards, so lookups need no locking.
    Records are held by reference; the registry never copies them.
    """

    def __init__(self, repositories: Mapping[str, Repository]):
        seen = {}
        for routing_name, repo in repositories.items():
            if repo.name in seen:
                raise ValueError(
                    f"Repository '{repo.name}' is configured twice "
                    f"('{seen[repo.name]}' and '{routing_name}')."
                )
            seen[repo.name] = routing_name
        self._repositories = MappingProxyType(dict(repositories))

    def find(self, routing_name: str) -> Optional[Repository]:
        return self._repositories.get(routing_name)

    def find_by_identifier(self, name: str) -> Optional[Repository]:
        for repo in self._repositories.values():
            if repo.name == name:
                return repo
        return None

    def __contains__(self, routing_name) -> bool:
        return routing_name in self._repositories

    def __iter__(self) -> Iterator[str]:
        return iter(self._repositories)

    def __len__(self) -> int:
        return len(self._repositories)
