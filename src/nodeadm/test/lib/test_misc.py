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
import os

import pytest

from nodeadm.lib.io import AtomicFileCreate, write_file_with_dir
from nodeadm.lib.misc import get_arch, parse_duration, read_os_release
from nodeadm.test import NodeadmTest

logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.DEBUG)


class DurationTest(NodeadmTest):
    def test_single_units(self):
        self.assertEqual(parse_duration("24h"), datetime.timedelta(hours=24))
        self.assertEqual(parse_duration("90m"), datetime.timedelta(minutes=90))
        self.assertEqual(parse_duration("30s"), datetime.timedelta(seconds=30))

    def test_compound(self):
        self.assertEqual(parse_duration("1h30m15s"), datetime.timedelta(hours=1, minutes=30, seconds=15))
        self.assertEqual(parse_duration("1.5h"), datetime.timedelta(minutes=90))

    def test_invalid(self):
        for bad in ("", "24", "h", "24d", "1h junk", "-1h"):
            with pytest.raises(ValueError):
                parse_duration(bad)


class ArchTest(NodeadmTest):
    def test_machine_names(self):
        self.assertEqual(get_arch("x86_64"), "amd64")
        self.assertEqual(get_arch("aarch64"), "arm64")
        self.assertEqual(get_arch("AMD64"), "amd64")


class FileTest(NodeadmTest):
    def test_os_release(self):
        path = os.path.join(self._createTempDir(), "os-release")
        with open(path, "w") as f:
            f.write('# comment\nNAME="Ubuntu"\nID=ubuntu\nVERSION_ID="20.04"\n\nJUNK\n')
        self.assertEqual(read_os_release(path), {"NAME": "Ubuntu", "ID": "ubuntu", "VERSION_ID": "20.04"})

    def test_write_file_with_dir(self):
        path = os.path.join(self._createTempDir(), "a", "b", "file")
        write_file_with_dir(path, "hello", mode=0o600)
        with open(path) as f:
            self.assertEqual(f.read(), "hello")
        self.assertEqual(os.stat(path).st_mode & 0o777, 0o600)
        # Overwrites keep working
        write_file_with_dir(path, b"bye", mode=0o644)
        with open(path, "rb") as f:
            self.assertEqual(f.read(), b"bye")
        self.assertEqual(os.stat(path).st_mode & 0o777, 0o644)

    def test_atomic_file_create_cleans_up(self):
        final = os.path.join(self._createTempDir(), "final")
        with pytest.raises(RuntimeError):
            with AtomicFileCreate(final) as tmp:
                with open(tmp, "w") as f:
                    f.write("partial")
                raise RuntimeError("boom")
        assert not os.path.exists(final)
        assert os.listdir(os.path.dirname(final)) == []
