"""DTO validation against declared pydantic constraints."""

from typing import Any, Mapping, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from schemarepo.core.exceptions import ValidationError

D = TypeVar("D", bound=BaseModel)


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "<root>"
        parts.append(f"field '{location}': {error.get('msg')} [{error.get('type')}]")
    return "; ".join(parts)


def validate(dto_type: Type[D], dto: Union[D, Mapping[str, Any]]) -> D:
    """
    Check a DTO (or raw mapping) against its declared field constraints.

    Instances are re-validated from their explicitly set fields, which also
    catches objects built with ``model_construct``.

    Args:
        dto_type: DTO class declaring the constraints
        dto: Instance or mapping to check

    Returns:
        A validated DTO instance

    Raises:
        ValidationError: Naming each violated field and rule

    Example:
        validate(CustomerDTO, {"name": "", "email": "ada@example.com"})
        # ValidationError: field 'name': String should have at least 1 character [string_too_short]
    """
    if isinstance(dto, BaseModel):
        if not isinstance(dto, dto_type):
            raise ValidationError(
                f"expected {dto_type.__name__}, got {type(dto).__name__}"
            )
        data = dto.model_dump(exclude_unset=True)
    else:
        data = dict(dto)
    try:
        return dto_type.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(_describe(exc), errors=exc.errors()) from exc
