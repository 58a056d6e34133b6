"""Capabilities an entity type can opt into at registration.

Entity types list their validators and hooks explicitly; the planners call
them in registration order through ``EntityType``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from relgraph.exceptions import ValidationError

if TYPE_CHECKING:
    from sqlalchemy import Select

    from relgraph.schema.models import EntityType


class Validator:
    """Validates the plain data of a row before it is inserted or updated."""

    def validate(self, entity: EntityType, data: dict[str, Any], *, patch: bool) -> dict[str, Any]:
        """Return the (possibly transformed) data or raise ``ValidationError``.

        Args:
            entity: Entity type the data belongs to
            data: Plain property values (logical names)
            patch: True for updates, where only changed properties are present
        """
        return data


class PydanticValidator(Validator):
    """Validates row data with a pydantic model.

    Values are coerced by the model. For patches, missing required fields
    are not reported.
    """

    def __init__(self, model: type[BaseModel]) -> None:
        self.model = model

    def validate(self, entity: EntityType, data: dict[str, Any], *, patch: bool) -> dict[str, Any]:
        try:
            validated = self.model.model_validate(data)
        except PydanticValidationError as e:
            field_errors: dict[str, str] = {}
            for error in e.errors():
                if patch and error["type"] == "missing":
                    continue
                location = ".".join(str(part) for part in error["loc"]) or "__root__"
                field_errors[location] = error["msg"]
            if field_errors:
                raise ValidationError(
                    f"Validation failed for '{entity.name}': {', '.join(sorted(field_errors))}",
                    field_errors,
                    entity_name=entity.name,
                ) from e
            return data

        result = dict(data)
        for name in self.model.model_fields:
            if name in data:
                result[name] = getattr(validated, name)
        return result


class EntityHooks:
    """Lifecycle hooks for an entity type.

    Subclass and override what you need. A ``before_*`` hook may mutate the
    data it receives; returning ``False`` cancels the operation before its
    statement is issued.
    """

    def before_fetch(self, entity: EntityType, statement: Select) -> bool | None:
        return None

    def after_fetch(self, entity: EntityType, rows: list[dict[str, Any]]) -> None:
        return None

    def before_insert(self, entity: EntityType, data: dict[str, Any]) -> bool | None:
        return None

    def after_insert(self, entity: EntityType, data: dict[str, Any]) -> None:
        return None

    def before_update(
        self, entity: EntityType, key: tuple[Any, ...], patch: dict[str, Any]
    ) -> bool | None:
        return None

    def after_update(self, entity: EntityType, key: tuple[Any, ...], patch: dict[str, Any]) -> None:
        return None

    def before_delete(self, entity: EntityType, key: tuple[Any, ...]) -> bool | None:
        return None

    def after_delete(self, entity: EntityType, key: tuple[Any, ...]) -> None:
        return None
