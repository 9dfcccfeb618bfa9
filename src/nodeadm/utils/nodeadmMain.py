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
"""The nodeadm command, which hands off to one module per subcommand."""
import os
import re
import sys
import types
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as distribution_version
from typing import Any, Dict

from nodeadm.version import version


def main() -> None:
    commands = loadModules()
    args = sys.argv[1:]

    if not args or args[0] in ('--help', '-h'):
        printHelp(commands)
        sys.exit(0)
    if args[0] == '--version':
        printVersion()
        sys.exit(0)

    module = commands.get(args[0])
    if module is None:
        sys.stderr.write(f'Unknown option "{args[0]}".  Pass --help to display usage information.\n')
        sys.exit(1)

    # The subcommand parses the rest of the command line as if it were its own
    del sys.argv[1]
    get_or_die(module, 'main')()


def get_or_die(module: types.ModuleType, name: str) -> Any:
    """Get an attribute of a subcommand module, exiting if it isn't there."""
    try:
        return getattr(module, name)
    except AttributeError:
        sys.stderr.write(f'Internal nodeadm error!\nnodeadm command module '
                         f'{module.__name__} is missing required attribute {name}\n')
        sys.exit(1)


def command_name(module_name: str) -> str:
    """
    >>> command_name('nodeadmGetEksRelease')
    'get-eks-release'
    """
    words = re.findall('[A-Z][^A-Z]*', module_name[len('nodeadm'):])
    return '-'.join(word.lower() for word in words)


def loadModules() -> Dict[str, types.ModuleType]:
    from nodeadm.utils import (nodeadmCleanup,
                               nodeadmGetEksRelease,
                               nodeadmResolveSource,
                               nodeadmSweeper,
                               nodeadmWriteKubeconfig)
    modules = [nodeadmCleanup, nodeadmGetEksRelease, nodeadmResolveSource, nodeadmSweeper, nodeadmWriteKubeconfig]
    return {command_name(m.__name__.rsplit('.', 1)[-1]): m for m in modules}


def printHelp(commands: Dict[str, types.ModuleType]) -> None:
    prog = os.path.basename(sys.argv[0])
    lines = [f'Usage: {prog} COMMAND ...',
             f'       {prog} --help',
             f'       {prog} COMMAND --help',
             '',
             'Where COMMAND is one of the following:',
             '']
    width = max(len(name) for name in commands)
    for name in sorted(commands):
        summary = (get_or_die(commands[name], '__doc__') or '').strip().splitlines()[0]
        lines.append(f'    {name.ljust(width)} - {summary}')
    print('\n'.join(lines))


def printVersion() -> None:
    try:
        print(distribution_version('nodeadm'))
    except PackageNotFoundError:
        print(f'Version gathered from nodeadm.version: {version}')
