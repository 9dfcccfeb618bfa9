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
import datetime
import logging
import platform
import re
from typing import Dict, Optional

import pytz

logger = logging.getLogger(__name__)


def utc_now() -> datetime.datetime:
    """Return a datetime in the UTC timezone corresponding to right now."""
    return datetime.datetime.now(tz=pytz.UTC)


# Kubernetes and the release manifest use Go's names for architectures
_MACHINE_TO_ARCH = {
    'x86_64': 'amd64',
    'amd64': 'amd64',
    'aarch64': 'arm64',
    'arm64': 'arm64',
}


def get_arch(machine: Optional[str] = None) -> str:
    """
    Get the architecture of this machine, as named in release artifacts
    (amd64 or arm64).
    """
    machine = (machine or platform.machine()).lower()
    return _MACHINE_TO_ARCH.get(machine, machine)


def get_os() -> str:
    """Get the operating system name, as named in release artifacts."""
    return platform.system().lower()


_DURATION_UNITS = {
    'h': 3600,
    'm': 60,
    's': 1,
}
_DURATION_RE = re.compile(r'(\d+(?:\.\d+)?)([hms])')


def parse_duration(value: str) -> datetime.timedelta:
    """
    Parse a duration like "24h", "90m" or "1h30m15s" into a timedelta.

    >>> parse_duration('1h30m')
    datetime.timedelta(seconds=5400)
    >>> parse_duration('45s')
    datetime.timedelta(seconds=45)
    """
    value = value.strip()
    if not value:
        raise ValueError('empty duration')
    seconds = 0.0
    position = 0
    for match in _DURATION_RE.finditer(value):
        if match.start() != position:
            break
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(value):
        raise ValueError(f"invalid duration '{value}': use a number followed by h, m or s, like 24h or 90m")
    return datetime.timedelta(seconds=seconds)


def read_os_release(path: str = '/etc/os-release') -> Dict[str, str]:
    """
    Parse an os-release file into a dict of its KEY=value pairs, with quotes
    removed from the values.
    """
    result = {}
    with open(path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, value = line.split('=', 1)
            result[key] = value.strip().strip('"').strip("'")
    return result
