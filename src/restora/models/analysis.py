"""AnalysisResult entity - structured metadata about an uploaded photograph."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Base model serializing to the camelCase JSON used on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class LightingInfo(_CamelModel):
    """Lighting descriptor extracted from the photograph."""

    primary_direction: str = Field(..., description="Primary light source direction")
    quality: str = Field(..., description="soft, harsh, diffused or direct")
    type: str = Field(..., description="natural, window, studio, flash, mixed or ambient")
    shadow_strength: str = Field(..., description="strong, moderate, subtle or minimal")
    description: str = Field(..., description="Free-text description of the lighting setup")


class AnalysisResult(_CamelModel):
    """Read-only analysis of one uploaded image.

    Every field is required: a provider response missing any of them is
    rejected rather than returned partially populated.
    """

    contains_children: bool = Field(..., description="True if any subject appears under 18")
    needs_perspective_correction: bool = Field(
        ..., description="True for a 'photo of a photo' that must be extracted first"
    )
    has_many_people: bool = Field(..., description="True if 7 or more people are visible")
    is_black_and_white: bool = Field(..., description="True for monochrome/sepia/faded photos")
    is_very_old: bool = Field(..., description="True if the photo appears pre-1960s")
    person_count: int = Field(..., ge=0, description="Exact number of people visible")
    has_eye_color_potential: bool = Field(
        ..., description="Single person and monochrome: eye color tuning is possible"
    )
    lighting_info: LightingInfo
    restoration_prompt: str = Field(..., min_length=1)
    video_prompt: str = Field(..., min_length=1)
    suggested_filename: str = Field(..., min_length=1)

    @property
    def qualifies_for_double_pass(self) -> bool:
        """Many subjects, monochrome or very old photos benefit from two passes."""
        return self.has_many_people or self.is_black_and_white or self.is_very_old

    def double_pass_reasons(self) -> list[str]:
        reasons = []
        if self.has_many_people:
            reasons.append("many_people")
        if self.is_black_and_white:
            reasons.append("black_and_white")
        if self.is_very_old:
            reasons.append("very_old")
        return reasons


def should_use_double_pass(analysis: AnalysisResult, enhanced: bool) -> bool:
    """Double-pass restoration requires both the opt-in and a qualifying photo."""
    return enhanced and analysis.qualifies_for_double_pass
