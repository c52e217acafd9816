import base64
import binascii
from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator


DEFAULT_MIME_TYPE = "application/octet-stream"


def decode_data_url(data_url: str) -> Tuple[bytes, str]:
    """Splits a `data:<mime>;base64,<payload>` URL into raw bytes and its mime type."""
    if not data_url.startswith("data:") or "," not in data_url:
        raise ValueError("Captured image is not a data URL.")
    header, encoded = data_url[len("data:"):].split(",", 1)
    parts = header.split(";")
    mime_type = parts[0] or DEFAULT_MIME_TYPE
    try:
        if "base64" in parts[1:]:
            return base64.b64decode(encoded, validate=True), mime_type
        return encoded.encode("utf-8"), mime_type
    except binascii.Error as e:
        raise ValueError(f"Captured image payload is not valid base64: {e}") from e


class FilePayload(BaseModel):
    """Bytes of a user-selected file, base64 encoded, pending upload."""
    kind: Literal["file"] = "file"
    base64_data: str

    def raw_bytes(self) -> bytes:
        return base64.b64decode(self.base64_data)


class CapturedImagePayload(BaseModel):
    """A camera capture held only as an encoded image, with no backing file."""
    kind: Literal["captured_image"] = "captured_image"
    data_url: str

    @field_validator("data_url")
    @classmethod
    def _must_be_data_url(cls, value: str) -> str:
        if not value.startswith("data:") or "," not in value:
            raise ValueError("data_url must be a 'data:' URL")
        return value

    def to_file_payload(self) -> Tuple[FilePayload, str]:
        """Synthesizes the equivalent file-backed payload and returns it with the image mime type."""
        raw, mime_type = decode_data_url(self.data_url)
        return FilePayload(base64_data=base64.b64encode(raw).decode("ascii")), mime_type


LocalPayload = Annotated[Union[FilePayload, CapturedImagePayload], Field(discriminator="kind")]


class Document(BaseModel):
    name: str
    declared_size: Optional[int] = None # bytes; unknown for camera captures
    mime_type: Optional[str] = None

    # Exactly one of these is populated.
    local_payload: Optional[LocalPayload] = None
    remote_ref: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_location(self) -> "Document":
        if self.local_payload is not None and self.remote_ref is not None:
            raise ValueError(f"Document '{self.name}' cannot hold both a local payload and a remote reference.")
        if self.local_payload is None and self.remote_ref is None:
            raise ValueError(f"Document '{self.name}' must hold either a local payload or a remote reference.")
        return self

    @property
    def is_pending_upload(self) -> bool:
        return self.local_payload is not None
