"""
Audio calls against the backend: speech synthesis, transcription and
translation.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import httpx

from ..backend_client import BackendRequest, BackendTransport, BytesBody, JSONBody, parse_json_response
from ..errors import InvalidRequestError, map_backend_error

logger = logging.getLogger(__name__)

SPEECH_PATH = "/v1/audio/speech"
TRANSCRIPTIONS_PATH = "/v1/audio/transcriptions"
TRANSLATIONS_PATH = "/v1/audio/translations"

MAX_AUDIO_FILE_BYTES = 25 * 1024 * 1024
SUPPORTED_AUDIO_EXTENSIONS = (
    ".mp3", ".wav", ".flac", ".m4a", ".ogg", ".webm", ".mp4", ".mpeg", ".mpga", ".oga", ".opus",
)
# Formats the backend answers with plain text instead of JSON
TEXT_RESPONSE_FORMATS = ("text", "srt", "vtt")

AudioFile = Union[str, os.PathLike, bytes]


async def create_speech(
    transport: BackendTransport,
    model: str,
    input: str,
    voice: str,
    *,
    response_format: Optional[str] = None,
    speed: Optional[float] = None,
    cancel: Optional[asyncio.Event] = None,
) -> bytes:
    """Synthesize speech; returns the raw audio bytes."""
    if not model:
        raise InvalidRequestError("model is required")
    if not input:
        raise InvalidRequestError("input cannot be empty")
    if not voice:
        raise InvalidRequestError("voice is required")
    if speed is not None and not 0.25 <= speed <= 4.0:
        raise InvalidRequestError("speed must be between 0.25 and 4.0")

    payload: Dict[str, Any] = {"model": model, "input": input, "voice": voice}
    if response_format is not None:
        payload["response_format"] = response_format
    if speed is not None:
        payload["speed"] = speed

    resp = await transport.execute(
        BackendRequest(path=SPEECH_PATH, body=JSONBody(payload), headers={"Accept": "*/*"}),
        cancel=cancel,
    )
    return resp.content


async def _read_audio_file(file: AudioFile, filename: Optional[str]) -> Tuple[str, bytes]:
    """Resolve ``file`` to ``(filename, bytes)`` and check format and size."""
    if isinstance(file, bytes):
        if not filename:
            raise InvalidRequestError("filename is required when uploading raw audio bytes")
        data = file
    else:
        if not file:
            raise InvalidRequestError("audio file path cannot be empty")
        path = Path(file)
        if not path.is_file():
            raise InvalidRequestError(f"audio file does not exist: {path}")
        filename = filename or path.name
        data = await asyncio.to_thread(path.read_bytes)

    ext = os.path.splitext(filename)[1].lower()
    if ext not in SUPPORTED_AUDIO_EXTENSIONS:
        raise InvalidRequestError(f"unsupported file format: {ext or filename}")
    if not data:
        raise InvalidRequestError("audio file is empty")
    if len(data) > MAX_AUDIO_FILE_BYTES:
        raise InvalidRequestError(f"audio file exceeds {MAX_AUDIO_FILE_BYTES} bytes")
    return filename, data


def _multipart_body(fields: Mapping[str, Any], filename: str, data: bytes) -> BytesBody:
    """Encode form fields plus the ``file`` part with httpx's multipart encoder."""
    encoded = httpx.Request(
        "POST",
        "http://multipart.local",
        data=dict(fields),
        files={"file": (filename, data)},
    )
    return BytesBody(encoded.read(), encoded.headers["Content-Type"])


def _form_fields(
    model: str,
    *,
    prompt: Optional[str],
    response_format: Optional[str],
    temperature: Optional[float],
    extra_fields: Optional[Mapping[str, Any]],
    **optional: Any,
) -> Dict[str, Any]:
    if not model:
        raise InvalidRequestError("model is required")
    if temperature is not None and not 0 <= temperature <= 1:
        raise InvalidRequestError("temperature must be between 0 and 1")

    fields: Dict[str, Any] = {"model": model}
    if prompt:
        fields["prompt"] = prompt
    if response_format:
        fields["response_format"] = response_format
    if temperature is not None:
        fields["temperature"] = f"{temperature:f}"
    for key, value in optional.items():
        if value:
            fields[key] = value
    for key, value in (extra_fields or {}).items():
        fields[key] = str(value)
    return fields


async def _upload(
    transport: BackendTransport,
    path: str,
    file: AudioFile,
    filename: Optional[str],
    fields: Dict[str, Any],
    cancel: Optional[asyncio.Event],
) -> Dict[str, Any]:
    filename, data = await _read_audio_file(file, filename)
    logger.debug(f"Uploading {filename} ({len(data)} bytes) to {path}")

    resp = await transport.execute(
        BackendRequest(path=path, body=_multipart_body(fields, filename, data)),
        cancel=cancel,
    )
    if fields.get("response_format") in TEXT_RESPONSE_FORMATS:
        return {"text": resp.text}

    result = parse_json_response(resp)
    if isinstance(result, dict) and result.get("error"):
        raise map_backend_error(None, result)
    return result


async def create_transcription(
    transport: BackendTransport,
    file: AudioFile,
    model: str,
    *,
    filename: Optional[str] = None,
    language: Optional[str] = None,
    prompt: Optional[str] = None,
    response_format: Optional[str] = None,
    temperature: Optional[float] = None,
    timestamp_granularities: Optional[List[str]] = None,
    extra_fields: Optional[Mapping[str, Any]] = None,
    cancel: Optional[asyncio.Event] = None,
) -> Dict[str, Any]:
    """
    Transcribe an audio file in its spoken language.

    Args:
        transport: Backend transport
        file: Path to the audio file, or its raw bytes (then ``filename`` is required)
        model: Backend model id
        filename: Name sent with the upload; defaults to the file's own name

    Returns:
        The decoded response; for text formats (``text``, ``srt``, ``vtt``)
        ``{"text": <body>}``

    Raises:
        InvalidRequestError: missing model, unreadable or unsupported file
    """
    fields = _form_fields(
        model,
        prompt=prompt,
        response_format=response_format,
        temperature=temperature,
        extra_fields=extra_fields,
        language=language,
        **{"timestamp_granularities[]": list(timestamp_granularities or [])},
    )
    return await _upload(transport, TRANSCRIPTIONS_PATH, file, filename, fields, cancel)


async def create_translation(
    transport: BackendTransport,
    file: AudioFile,
    model: str,
    *,
    filename: Optional[str] = None,
    prompt: Optional[str] = None,
    response_format: Optional[str] = None,
    temperature: Optional[float] = None,
    extra_fields: Optional[Mapping[str, Any]] = None,
    cancel: Optional[asyncio.Event] = None,
) -> Dict[str, Any]:
    """Translate an audio file into English text. Arguments as for ``create_transcription``."""
    fields = _form_fields(
        model,
        prompt=prompt,
        response_format=response_format,
        temperature=temperature,
        extra_fields=extra_fields,
    )
    return await _upload(transport, TRANSLATIONS_PATH, file, filename, fields, cancel)
