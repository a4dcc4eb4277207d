from pydantic import BaseModel as PydanticBaseModel, ConfigDict


class BaseModel(PydanticBaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, from_attributes=True)


class FrozenModel(BaseModel):
    """Value objects; shared between threads, so they can't change."""

    model_config = ConfigDict(frozen=True)
