# Copyright (c) 2020 AllSeeingEyeTolledEweSew
#
# Permission to use, copy, modify, and/or distribute this software for any
# purpose with or without fee is hereby granted.
#
# THE SOFTWARE IS PROVIDED "AS IS" AND THE AUTHOR DISCLAIMS ALL WARRANTIES WITH
# REGARD TO THIS SOFTWARE INCLUDING ALL IMPLIED WARRANTIES OF MERCHANTABILITY
# AND FITNESS. IN NO EVENT SHALL THE AUTHOR BE LIABLE FOR ANY SPECIAL, DIRECT,
# INDIRECT, OR CONSEQUENTIAL DAMAGES OR ANY DAMAGES WHATSOEVER RESULTING FROM
# LOSS OF USE, DATA OR PROFITS, WHETHER IN AN ACTION OF CONTRACT, NEGLIGENCE OR
# OTHER TORTIOUS ACTION, ARISING OUT OF OR IN CONNECTION WITH THE USE OR
# PERFORMANCE OF THIS SOFTWARE.

import subprocess
from typing import List
from typing import Tuple

import setuptools


class FormatCommand(setuptools.Command):

    description = "Run isort, autoflake and black on python source files"
    user_options: List[Tuple] = []

    def initialize_options(self) -> None:
        pass

    def finalize_options(self) -> None:
        pass

    def run_isort(self) -> None:
        subprocess.check_call(["isort", "."])

    def run_autoflake(self) -> None:
        subprocess.check_call(
            [
                "autoflake",
                "-i",
                "-r",
                "--remove-all-unused-imports",
                "--remove-duplicate-keys",
                "--remove-unused-variables",
                ".",
            ]
        )

    def run_black(self) -> None:
        subprocess.check_call(["black", "-l", "79", "."])

    def run(self) -> None:
        self.run_isort()
        self.run_autoflake()
        self.run_black()


class LintCommand(setuptools.Command):

    description = "Run mypy on python source files"
    user_options: List[Tuple] = []

    def initialize_options(self) -> None:
        pass

    def finalize_options(self) -> None:
        pass

    def run_mypy(self) -> None:
        subprocess.check_call(["mypy", "magnetplay"])

    def run(self) -> None:
        self.run_mypy()


with open("README") as readme:
    documentation = readme.read()

setuptools.setup(
    name="magnetplay",
    version="0.1.0",
    description="Stream video from magnet links over HTTP",
    long_description=documentation,
    author="AllSeeingEyeTolledEweSew",
    author_email="allseeingeyetolledewesew@protonmail.com",
    url="http://github.com/AllSeeingEyeTolledEweSew/magnetplay",
    license="ISC",
    packages=setuptools.find_packages(),
    cmdclass={
        "format": FormatCommand,
        "lint": LintCommand,
    },
    test_suite="magnetplay.tests",
    python_requires=">=3.7",
    install_requires=[
        "flask>=2.0",
        "werkzeug>=2.0",
        "libtorrent>=2.0",
    ],
    extras_require={
        "test": [
            "pytest",
            "requests",
        ],
    },
    entry_points={
        "console_scripts": [
            "magnetplay=magnetplay.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: ISC License (ISCL)",
        "Programming Language :: Python",
        "Topic :: Communications :: File Sharing",
        "Topic :: Multimedia :: Video",
        "Topic :: System :: Networking",
        "Operating System :: OS Independent",
    ],
)
