# Copyright (C) 2015-2021 Regents of the University of California
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
import gzip
import hashlib
import logging
from io import BytesIO
from typing import BinaryIO, Tuple, Union

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class ChecksumError(Exception):
    """Raised when a download does not contain the correct data."""


def compute_checksum_for_content(fh: Union[BinaryIO, BytesIO], algorithm: str = "sha256") -> str:
    """Return the hex digest of everything left in fh."""
    hasher = hashlib.new(algorithm)
    contents = fh.read(CHUNK_SIZE)
    while contents != b"":
        hasher.update(contents)
        contents = fh.read(CHUNK_SIZE)
    return hasher.hexdigest()


def parse_gnu_checksum(data: Union[str, bytes]) -> Tuple[str, str]:
    """
    Parse a line in the format written by sha256sum and friends:
    "<hex digest>  <file name>", returning the digest and the file name.

    >>> parse_gnu_checksum('abc123  kubelet\\n')
    ('abc123', 'kubelet')
    """
    if isinstance(data, bytes):
        data = data.decode('utf-8', errors='replace')
    parts = data.strip().split()
    if len(parts) != 2:
        raise ChecksumError("invalid gnu checksum")
    digest, filename = parts
    # sha256sum marks binary mode with a leading '*'
    return digest.lower(), filename.lstrip('*')


def verify_checksum(data: bytes, checksum_file: Union[str, bytes], algorithm: str = "sha256") -> str:
    """
    Check data against the digest in a GNU-format checksum file, raising
    ChecksumError on mismatch. Returns the digest.
    """
    expected, _ = parse_gnu_checksum(checksum_file)
    actual = compute_checksum_for_content(BytesIO(data), algorithm=algorithm)
    if actual != expected:
        raise ChecksumError(f"checksum mismatch: expected {expected}, got {actual}")
    return actual


def decompress_gzip(data: bytes) -> bytes:
    try:
        return gzip.decompress(data)
    except (OSError, EOFError) as e:
        raise ChecksumError(f"invalid gzip data: {e}") from e
