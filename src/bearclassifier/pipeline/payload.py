"""Image payload handed to the pipeline by the UI collaborator."""

from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from pathlib import Path

from bearclassifier.pipeline.outcome import EmptyInputError

DEFAULT_MEDIA_TYPE = "image/jpeg"
DEFAULT_FILENAME = "uploaded_image.jpg"


@dataclass(frozen=True)
class ImagePayload:
    """Raw image bytes plus the metadata needed for the multipart envelope."""

    content: bytes
    media_type: str = DEFAULT_MEDIA_TYPE
    filename: str = DEFAULT_FILENAME

    def __repr__(self) -> str:
        return f"ImagePayload(filename={self.filename!r}, media_type={self.media_type!r}, size={len(self.content)})"

    @classmethod
    def from_file(cls, path: str | Path) -> ImagePayload:
        """Read an image from disk, guessing the media type from its suffix."""
        file_path = Path(path)
        guessed, _ = mimetypes.guess_type(file_path.name)
        return cls(
            content=file_path.read_bytes(),
            media_type=guessed or DEFAULT_MEDIA_TYPE,
            filename=file_path.name,
        )

    def validate(self) -> None:
        """Raise EmptyInputError if the payload cannot be uploaded."""
        if not self.content:
            raise EmptyInputError("No image data to upload")
        if not self.media_type.strip():
            raise EmptyInputError("Image payload has no media type")
