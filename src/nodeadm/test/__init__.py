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
import shutil
import tempfile
import unittest
from typing import Any, List, Optional
from unittest.util import strclass

import pytz

logger = logging.getLogger(__name__)

TESTDATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'testdata')


class NodeadmTest(unittest.TestCase):
    """
    Base class for nodeadm's tests, which hands out scratch directories.

    Scratch directories go away with the test class, unless NODEADM_TEST_TEMP
    names a directory to keep them in for a look afterwards.
    """

    _tempBaseDir: Optional[str] = None
    _tempDirs: List[str] = []

    def setup_method(self, method: Any) -> None:
        # Pacific time, to line up with the timestamps of the e2e test account's logs
        now = pytz.timezone('America/Los_Angeles').localize(datetime.datetime.now())
        print(f"\n\n[TEST] {strclass(self.__class__)}:{self._testMethodName} "
              f"({now.strftime('%b %d %Y %H:%M:%S:%f %Z')})\n\n")

    @classmethod
    def setUpClass(cls) -> None:
        super().setUpClass()
        keep_in = os.environ.get('NODEADM_TEST_TEMP')
        if keep_in:
            keep_in = os.path.abspath(keep_in)
            os.makedirs(keep_in, exist_ok=True)
        cls._tempBaseDir = keep_in or None

    @classmethod
    def tearDownClass(cls) -> None:
        if cls._tempBaseDir is None:
            while cls._tempDirs:
                shutil.rmtree(cls._tempDirs.pop(), ignore_errors=True)
        else:
            del cls._tempDirs[:]
        super().tearDownClass()

    def setUp(self) -> None:
        logger.info("Setting up %s ...", self.id())
        super().setUp()

    def tearDown(self) -> None:
        super().tearDown()
        logger.info("Tore down %s", self.id())

    @classmethod
    def awsRegion(cls) -> str:
        return 'us-west-2'

    def _createTempDir(self, purpose: Optional[str] = None) -> str:
        """Make a scratch directory named after the running test."""
        parts = ['nodeadm', 'test', self.__class__.__name__, self._testMethodName]
        if purpose:
            parts.append(purpose)
        path = os.path.realpath(tempfile.mkdtemp(dir=self._tempBaseDir, prefix='-'.join(parts) + '-'))
        self._tempDirs.append(path)
        return path

    @staticmethod
    def dataPath(*names: str) -> str:
        return os.path.join(TESTDATA_DIR, *names)
