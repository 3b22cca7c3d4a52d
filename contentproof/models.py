from typing import List

from pydantic import BaseModel, Field, field_validator

from .errors import ValidationError
from .hashing import normalize_content_hash
from .manifest import normalize_address


class BindingItem(BaseModel):
    platform: str = Field(min_length=1)
    platformId: str = Field(min_length=1)


class _BindTarget(BaseModel):
    registryAddress: str
    contentHash: str

    @field_validator("registryAddress")
    @classmethod
    def check_registry_address(cls, value: str) -> str:
        try:
            return normalize_address(value, "registryAddress")
        except ValidationError as e:
            raise ValueError(e.message)

    @field_validator("contentHash")
    @classmethod
    def check_content_hash(cls, value: str) -> str:
        try:
            return normalize_content_hash(value)
        except ValidationError as e:
            raise ValueError(e.message)


class BindRequest(_BindTarget):
    platform: str = Field(min_length=1)
    platformId: str = Field(min_length=1)


class BindManyRequest(_BindTarget):
    bindings: List[BindingItem] = Field(min_length=1)
