from typing import Any, TypeVar

from pydantic import BaseModel, TypeAdapter, ValidationError

from app.core.exceptions import ValidationFailed

ModelT = TypeVar("ModelT", bound=BaseModel)


def validation_failed_from(exc: ValidationError) -> ValidationFailed:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ())) or None
    return ValidationFailed(error.get("msg", "Invalid input"), field=field)


def validate_model(model: type[ModelT], data: ModelT | dict[str, Any]) -> ModelT:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise validation_failed_from(exc) from exc


def validate_union(adapter: TypeAdapter[Any], data: BaseModel | dict[str, Any]) -> Any:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    try:
        return adapter.validate_python(data)
    except ValidationError as exc:
        raise validation_failed_from(exc) from exc
