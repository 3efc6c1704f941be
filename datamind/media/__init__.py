"""
Media Module

Byte-exact codecs and playback resource tracking for generated media.
"""

from __future__ import annotations

from .codec import (
    Blob,
    WavHeader,
    base64_decode,
    base64_encode,
    base64_to_blob,
    blob_to_base64,
    blob_to_data_uri,
    data_uri_to_blob,
    decode_pcm_to_float,
    read_wav_header,
    write_wav,
)
from .resources import PlaybackResources

__all__ = [
    "Blob",
    "PlaybackResources",
    "WavHeader",
    "base64_decode",
    "base64_encode",
    "base64_to_blob",
    "blob_to_base64",
    "blob_to_data_uri",
    "data_uri_to_blob",
    "decode_pcm_to_float",
    "read_wav_header",
    "write_wav",
]
