"""
registry/models.py -- Domain dataclasses for the package registry.

Pure data containers with zero logic. Queries and maintainer bookkeeping live
in registry/store.py.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Package:
    """A registered package.

    name is "vendor/name" and is unique across the registry.
    maintainer_ids lists the users allowed to manage the package; it is
    filled by the store on reads and ignored on insert (use add_maintainer).

    id is None before the record is written to the database.
    """

    name: str
    description: str = ""
    repository: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    maintainer_ids: list[int] = field(default_factory=list)

    @property
    def vendor(self) -> str:
        return self.name.split("/", 1)[0]
