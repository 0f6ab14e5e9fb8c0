# base.py
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Wire format is camelCase; attributes stay snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def _normalize_email(value):
    return value.strip().lower() if isinstance(value, str) else value


# Emails are unique across the whole system, compare them case-insensitively
NormalizedEmail = Annotated[EmailStr, BeforeValidator(_normalize_email)]
