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
import os
import types
from importlib.machinery import SourceFileLoader

from setuptools import find_packages, setup

SETUP_DIR = os.path.dirname(os.path.abspath(__file__))
README = os.path.join(SETUP_DIR, "README.rst")


def get_requirements(extra=None):
    """
    Load the requirements for the given extra.

    Uses the appropriate requirements-extra.txt, or the main requirements.txt
    if no extra is specified.
    """
    filename = f"requirements-{extra}.txt" if extra else "requirements.txt"

    with open(os.path.join(SETUP_DIR, filename)) as fp:
        # Parse out as one per line, dropping comments
        return [
            l.split("#")[0].strip() for l in fp.readlines() if l.split("#")[0].strip()
        ]


def run_setup():
    """
    Call setup().

    This function exists so the setup() invocation preceded more internal functionality.
    The `version` module is imported dynamically by import_version() below.
    """
    install_requires = get_requirements()

    extras_require = {"test": get_requirements("dev")}
    setup(
        name="nodeadm",
        version=version.distVersion,
        long_description=open(README).read(),
        long_description_content_type="text/x-rst",
        description="Node bootstrap tooling and e2e test-infrastructure sweeper for EKS and EKS hybrid nodes.",
        author="The nodeadm developers",
        classifiers=[
            "Development Status :: 4 - Beta",
            "Environment :: Console",
            "Intended Audience :: Developers",
            "Intended Audience :: System Administrators",
            "License :: OSI Approved :: Apache Software License",
            "Natural Language :: English",
            "Operating System :: POSIX :: Linux",
            "Programming Language :: Python :: 3.9",
            "Programming Language :: Python :: 3.10",
            "Programming Language :: Python :: 3.11",
            "Programming Language :: Python :: 3.12",
            "Programming Language :: Python :: 3.13",
            "Topic :: System :: Clustering",
            "Topic :: System :: Systems Administration",
            "Topic :: Utilities",
        ],
        license="Apache License v2.0",
        python_requires=">=3.9",
        install_requires=install_requires,
        extras_require=extras_require,
        package_dir={"": "src"},
        packages=find_packages(where="src"),
        package_data={"nodeadm.test": ["testdata/*"]},
        include_package_data=True,
        entry_points={
            "console_scripts": [
                "nodeadm = nodeadm.utils.nodeadmMain:main",
            ]
        },
    )


def import_version():
    """Return the module object for src/nodeadm/version.py."""
    loader = SourceFileLoader(
        "nodeadm.version", os.path.join(SETUP_DIR, "src/nodeadm/version.py")
    )
    mod = types.ModuleType(loader.name)
    loader.exec_module(mod)
    return mod


version = import_version()
run_setup()
