import re

from pydantic import BaseModel, Field, field_validator

LANGUAGE_PATTERN = re.compile(r"^[a-z_]+(\+[a-z_]+)*$")


class PreprocessingOptions(BaseModel):
    """Image preprocessing flags applied before recognition."""

    deskew: bool = False
    denoise: bool = False
    rotate: float = Field(default=0, ge=-360, le=360, description="Rotation in degrees, counter-clockwise")
    binarize: bool = False

    @property
    def any_enabled(self) -> bool:
        return self.deskew or self.denoise or self.binarize or self.rotate != 0


class JobOptions(BaseModel):
    """Recognition options for a job."""

    language: str = "eng"
    preprocessing: PreprocessingOptions = Field(default_factory=PreprocessingOptions)

    @field_validator("language")
    @classmethod
    def _check_language(cls, value: str) -> str:
        if not LANGUAGE_PATTERN.match(value):
            raise ValueError(f"Invalid language code: {value!r}")
        return value
