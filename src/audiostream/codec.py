# audiostream/codec.py
from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from .errors import DecodeError, EncodeError
from .models import AudioDocument, FetchRequest, FileType, StreamResponse

# Wire keys follow the audio stream server's JSON layout.
_DOCUMENT_FIELDS = ("documentID", "artists", "title", "fileType", "storageID")


def _require(obj: dict, key: str, kind: type | tuple[type, ...], where: str) -> Any:
    if key not in obj:
        raise DecodeError(f"Missing field '{key}' in {where}")
    value = obj[key]
    # bool is an int subclass; a size of `true` is still malformed
    if isinstance(value, bool) and kind is int:
        raise DecodeError(f"Field '{key}' in {where} has wrong type")
    if not isinstance(value, kind):
        raise DecodeError(f"Field '{key}' in {where} has wrong type")
    return value


class RequestCodec:
    """
    JSON codec for one request/response pair:
      FetchRequest   -> bytes          (client -> server)
      bytes          -> StreamResponse (server -> client)

    The audio buffer travels as base64 text, the way the server marshals raw bytes.
    """

    encoding = "utf-8"

    def encode(self, request: FetchRequest) -> bytes:
        try:
            body = json.dumps(
                {"documentID": request.track_id},
                separators=(",", ":"),
                sort_keys=True,
                ensure_ascii=False,
            )
            return body.encode(self.encoding)
        except (TypeError, ValueError) as e:
            raise EncodeError(f"Unable to request audio stream: {e}") from e

    def decode(self, payload: bytes) -> StreamResponse:
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise DecodeError(f"Malformed audio stream response: {e}") from e

        if not isinstance(data, dict):
            raise DecodeError("Malformed audio stream response: expected a JSON object")

        document = self._decode_document(_require(data, "document", dict, "response"))

        raw_buffer = _require(data, "audioBuffer", str, "response")
        try:
            audio_buffer = base64.b64decode(raw_buffer, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Invalid audioBuffer encoding: {e}") from e

        size = _require(data, "audioBufferSize", int, "response")
        if size != len(audio_buffer):
            raise DecodeError(
                f"audioBufferSize mismatch: declared {size}, received {len(audio_buffer)} bytes"
            )

        return StreamResponse(document=document, audio_buffer=audio_buffer, audio_buffer_size=size)

    def encode_response(self, response: StreamResponse) -> bytes:
        """Reverse of decode(); mirrors what the server sends."""
        doc = response.document
        try:
            body = json.dumps(
                {
                    "document": {
                        "documentID": doc.track_id,
                        "artists": list(doc.artists),
                        "title": doc.title,
                        "fileType": doc.file_type.value,
                        "storageID": doc.storage_id,
                    },
                    "audioBuffer": base64.b64encode(response.audio_buffer).decode("ascii"),
                    "audioBufferSize": response.audio_buffer_size,
                },
                separators=(",", ":"),
                sort_keys=True,
                ensure_ascii=False,
            )
            return body.encode(self.encoding)
        except (TypeError, ValueError) as e:
            raise EncodeError(f"Unable to encode audio stream response: {e}") from e

    @staticmethod
    def _decode_document(obj: dict) -> AudioDocument:
        missing = [k for k in _DOCUMENT_FIELDS if k not in obj]
        if missing:
            raise DecodeError(f"Missing field '{missing[0]}' in document")

        artists = _require(obj, "artists", list, "document")
        if not all(isinstance(a, str) for a in artists):
            raise DecodeError("Field 'artists' in document must contain strings")

        raw_type = _require(obj, "fileType", str, "document")
        try:
            file_type = FileType(raw_type)
        except ValueError:
            raise DecodeError(f"Unsupported fileType '{raw_type}'") from None

        return AudioDocument(
            track_id=_require(obj, "documentID", str, "document"),
            title=_require(obj, "title", str, "document"),
            file_type=file_type,
            storage_id=_require(obj, "storageID", str, "document"),
            artists=tuple(artists),
        )
