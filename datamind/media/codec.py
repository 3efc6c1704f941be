"""
Media Codec

Pure, byte-exact conversions between base64 text, raw bytes, Blob values and
the canonical 16-bit PCM WAV container. Generated audio and video travel
through the text-based history store as base64 and come back through these
functions as playable blobs.
"""

from __future__ import annotations

import base64
import binascii
import struct
import sys
from array import array
from dataclasses import dataclass

WAV_HEADER_SIZE = 44
BITS_PER_SAMPLE = 16
PCM_FORMAT_TAG = 1
PCM_SAMPLE_SCALE = 32768.0

# RIFF/WAVE header, all fields little-endian
_WAV_HEADER = struct.Struct("<4sI4s4sIHHIIHH4sI")


@dataclass(frozen=True)
class Blob:
    """Immutable binary payload tagged with a MIME type."""

    data: bytes
    mime_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class WavHeader:
    riff_size: int
    num_channels: int
    sample_rate: int
    byte_rate: int
    block_align: int
    bits_per_sample: int
    data_size: int


# ---------- base64 ----------


def base64_encode(data: bytes) -> str:
    """Standard-alphabet base64 without line wrapping, padding kept."""
    return base64.b64encode(data).decode("ascii")


def base64_decode(text: str) -> bytes:
    """Decode standard-alphabet base64.

    Raises:
        ValueError: if the text is not valid base64
    """
    try:
        return base64.b64decode(text, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 data: {e}") from e


# ---------- Blob transcoding ----------


def blob_to_data_uri(blob: Blob) -> str:
    return f"data:{blob.mime_type};base64,{base64_encode(blob.data)}"


def blob_to_base64(blob: Blob) -> str:
    """Read the blob fully and return its base64 body without the data-URI prefix."""
    data_uri = blob_to_data_uri(blob)
    return data_uri.split(",", 1)[1]


def base64_to_blob(text: str, mime_type: str) -> Blob:
    return Blob(data=base64_decode(text), mime_type=mime_type)


def data_uri_to_blob(data_uri: str) -> Blob:
    """Parse a `data:<mime>;base64,<body>` URI into a Blob."""
    header, sep, body = data_uri.partition(",")
    if not sep or not header.startswith("data:") or not header.endswith(";base64"):
        raise ValueError("Not a base64 data URI")
    mime_type = header[len("data:") : -len(";base64")] or "application/octet-stream"
    return base64_to_blob(body, mime_type)


# ---------- WAV ----------


def write_wav(pcm: bytes, sample_rate: int, num_channels: int) -> Blob:
    """Wrap 16-bit PCM samples in a 44-byte RIFF/WAVE header."""
    if num_channels < 1:
        raise ValueError("num_channels must be at least 1")
    if sample_rate < 1:
        raise ValueError("sample_rate must be positive")

    bytes_per_sample = BITS_PER_SAMPLE // 8
    data_size = len(pcm)
    header = _WAV_HEADER.pack(
        b"RIFF",
        36 + data_size,
        b"WAVE",
        b"fmt ",
        16,
        PCM_FORMAT_TAG,
        num_channels,
        sample_rate,
        sample_rate * num_channels * bytes_per_sample,
        num_channels * bytes_per_sample,
        BITS_PER_SAMPLE,
        b"data",
        data_size,
    )
    return Blob(data=header + bytes(pcm), mime_type="audio/wav")


def read_wav_header(data: bytes) -> WavHeader:
    """Parse the canonical 44-byte header written by write_wav()."""
    if len(data) < WAV_HEADER_SIZE:
        raise ValueError("Data too short for a WAV header")
    fields = _WAV_HEADER.unpack_from(data)
    riff, riff_size, wave, fmt, _fmt_size, fmt_tag = fields[:6]
    if riff != b"RIFF" or wave != b"WAVE" or fmt != b"fmt " or fields[11] != b"data":
        raise ValueError("Not a canonical RIFF/WAVE file")
    if fmt_tag != PCM_FORMAT_TAG:
        raise ValueError(f"Unsupported WAV format tag: {fmt_tag}")
    return WavHeader(
        riff_size=riff_size,
        num_channels=fields[6],
        sample_rate=fields[7],
        byte_rate=fields[8],
        block_align=fields[9],
        bits_per_sample=fields[10],
        data_size=fields[12],
    )


def decode_pcm_to_float(pcm: bytes, sample_rate: int, num_channels: int) -> list[list[float]]:
    """De-interleave signed 16-bit LE PCM into per-channel floats in [-1, 1).

    `sample_rate` is not needed for the conversion itself; it is accepted so
    callers can pass the same audio description they pass to write_wav().
    Trailing partial frames are discarded.
    """
    if num_channels < 1:
        raise ValueError("num_channels must be at least 1")

    sample_count = len(pcm) // 2
    frame_count = sample_count // num_channels
    samples = array("h")
    samples.frombytes(bytes(pcm[: frame_count * num_channels * 2]))
    if sys.byteorder == "big":
        samples.byteswap()

    return [
        [samples[i * num_channels + channel] / PCM_SAMPLE_SCALE for i in range(frame_count)]
        for channel in range(num_channels)
    ]
