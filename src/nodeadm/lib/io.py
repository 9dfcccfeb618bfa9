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
import logging
import os
import uuid
from contextlib import contextmanager
from typing import Iterator, Union

logger = logging.getLogger(__name__)

StrPath = Union[str, "os.PathLike[str]"]


def atomic_tmp_file(final_path: StrPath) -> str:
    """Return a tmp file name to use with atomic_install.  This will be in the
    same directory as final_path. The temporary file will have the same extension
    as final_path."""
    final_dir = os.path.dirname(os.path.normpath(final_path))  # can be empty
    final_basename = os.path.basename(final_path)
    final_ext = os.path.splitext(final_path)[1]
    base_name = f"{final_basename}.{str(uuid.uuid4())}.tmp{final_ext}"
    return os.path.join(final_dir, base_name)


def atomic_install(tmp_path: StrPath, final_path: StrPath) -> None:
    """atomic install of tmp_path as final_path"""
    os.rename(tmp_path, final_path)


@contextmanager
def AtomicFileCreate(final_path: StrPath, keep: bool = False) -> Iterator[str]:
    """Context manager to create a temporary file.  Entering returns path to
    the temporary file in the same directory as final_path.  If the code in
    context succeeds, the file renamed to its actual name.  If an error
    occurs, the file is not installed and is removed unless keep is specified.
    """
    tmp_path = atomic_tmp_file(final_path)
    try:
        yield tmp_path
        atomic_install(tmp_path, final_path)
    except Exception:
        if not keep:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
        raise


def write_file_with_dir(path: StrPath, data: Union[str, bytes], mode: int = 0o644) -> None:
    """
    Atomically write data to path with the given permissions, creating any
    missing parent directories first.
    """
    parent = os.path.dirname(os.path.normpath(path))
    if parent:
        os.makedirs(parent, exist_ok=True)
    with AtomicFileCreate(path) as tmp_path:
        with open(tmp_path, 'wb') as f:
            f.write(data.encode('utf-8') if isinstance(data, str) else data)
        os.chmod(tmp_path, mode)
    logger.debug("Wrote %s with mode %o", path, mode)

