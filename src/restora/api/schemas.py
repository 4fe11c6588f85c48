"""Request/response models shared by the API routers.

The wire format is camelCase; Python attributes are snake_case.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from restora.models.image import ImageAsset
from restora.services.exceptions import ValidationError


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ImagePayload(CamelModel):
    """Base64 image as sent by the frontend."""

    base64: str = Field(..., min_length=1, description="Base64 image bytes (data URI allowed)")
    mime_type: str = Field(..., min_length=1, description="Image MIME type")

    def to_asset(self) -> ImageAsset:
        return decode_image(self.base64, self.mime_type)


class ImageResponse(CamelModel):
    image: str = Field(..., description="Base64 encoded image bytes")
    mime_type: str


def decode_image(encoded: str, mime_type: str) -> ImageAsset:
    """Decode a base64 payload into an ImageAsset.

    Raises:
        ValidationError: If the payload is not valid base64 image data
    """
    try:
        return ImageAsset.from_base64(encoded, mime_type)
    except ValueError as e:
        raise ValidationError(str(e)) from e


def image_response(image: ImageAsset) -> ImageResponse:
    return ImageResponse(image=image.to_base64(), mime_type=image.mime_type)
