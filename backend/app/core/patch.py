from typing import Any, ClassVar

from pydantic import BaseModel, model_validator


class PatchModel(BaseModel):
    """Partial update body.

    Only keys present in the request are applied: an absent key leaves the
    column untouched, an explicit ``null`` clears it. Columns listed in
    ``required_fields`` cannot be cleared.
    """

    required_fields: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def _reject_null_required(self):
        cleared = [
            name
            for name in self.model_fields_set & self.required_fields
            if getattr(self, name) is None
        ]
        if cleared:
            raise ValueError(f"Fields cannot be null: {', '.join(sorted(cleared))}")
        return self

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)

    def apply_to(self, row: Any) -> dict[str, Any]:
        changed = self.changes()
        for name, value in changed.items():
            setattr(row, name, value)
        return changed
