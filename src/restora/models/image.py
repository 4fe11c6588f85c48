"""ImageAsset entity - immutable encoded image payload."""

import base64
import binascii
import hashlib

from pydantic import BaseModel, ConfigDict, Field

SUPPORTED_MIME_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif", "image/bmp")


class ImageAsset(BaseModel):
    """Encoded image bytes plus a format tag.

    Never mutated: every transformation produces a new ImageAsset.
    """

    model_config = ConfigDict(frozen=True)

    data: bytes = Field(repr=False)
    mime_type: str = "image/jpeg"

    @classmethod
    def from_base64(cls, encoded: str, mime_type: str) -> "ImageAsset":
        """Build an asset from base64 text (a data URI prefix is tolerated).

        Raises:
            ValueError: If the payload is empty or not valid base64
        """
        if encoded.startswith("data:") and "," in encoded:
            header, encoded = encoded.split(",", 1)
            mime_type = header[5:].split(";")[0] or mime_type
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 image data: {e}") from e
        if not data:
            raise ValueError("Image data is empty")
        return cls(data=data, mime_type=mime_type)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_uri(self) -> str:
        """Data URI form accepted by Replicate model inputs."""
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def fingerprint(self) -> str:
        """Stable cache identifier derived from the image bytes (SHA-256 hex)."""
        return hashlib.sha256(self.data).hexdigest()

    @property
    def extension(self) -> str:
        ext = self.mime_type.split("/")[-1]
        return "jpg" if ext == "jpeg" else (ext or "jpg")
