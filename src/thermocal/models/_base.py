"""Base model for thermocal records.

Every persisted record inherits from :class:`ThermocalModel` which
provides:

* ``alias_generator=to_camel`` so records serialise with camelCase keys
  (``commandTopic``, ``lastActionAt``) while Python code uses snake_case.
* ``populate_by_name=True`` so either spelling is accepted on load.
* ``extra="forbid"`` so a corrupted or foreign record fails loudly
  instead of being silently merged.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ThermocalModel(BaseModel):
    """Base for thermocal state records."""

    model_config = ConfigDict(
        extra="forbid",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_record(self) -> dict[str, Any]:
        """Return a JSON-compatible dict suitable for a key-value backend."""
        return self.model_dump(mode="json", by_alias=True)
