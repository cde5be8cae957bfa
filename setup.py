# Copyright 2018 Nathan V
# Copyright 2018 Nextdoor.com, Inc.
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
"""Setup the package."""
import io
import os
import sys

from setuptools import Command, find_packages, setup

from masl.metadata import __desc__, __version__

PACKAGE = 'masl'
DIR = os.path.dirname(os.path.realpath(__file__))


def requirements(filename):
    """Read a requirements file, skipping blank lines."""
    with open(os.path.join(DIR, filename)) as req_file:
        return [line.strip() for line in req_file if line.strip()]


class PycodestyleCommand(Command):
    """Pycodestyle check."""

    description = 'Pycodestyle Lint Checks'
    user_options = []

    def initialize_options(self):
        """Override to nothing."""
        pass

    def finalize_options(self):
        """Override to nothing."""
        pass

    def run(self):
        """Execute pycodestyle check."""
        import pycodestyle
        style = pycodestyle.StyleGuide()
        report = style.check_files([PACKAGE])
        if report.total_errors:
            sys.exit("ERROR: pycodestyle failed with {} errors".format(
                report.total_errors))


class PyflakesCommand(Command):
    """Pyflakes check."""

    description = 'Pyflakes Checks'
    user_options = []

    def initialize_options(self):
        """Override to nothing."""
        pass

    def finalize_options(self):
        """Override to nothing."""
        pass

    def run(self):
        """Execute pyflakes check."""
        from pyflakes import api
        from pyflakes import reporter

        val = api.checkRecursive([PACKAGE], reporter._makeDefaultReporter())
        if val > 0:
            sys.exit("ERROR: Pyflakes failed with exit code {}".format(val))


setup(
    name=PACKAGE,
    version=__version__,
    description=__desc__,
    long_description=io.open("{}/README.md".format(DIR),
                             encoding='utf-8').read(),
    long_description_content_type='text/markdown',
    license='Apache License, Version 2.0',
    keywords='AWS, OneLogin, SAML, STS, Keys, Auth, MFA, CLI',
    packages=find_packages(),
    install_requires=requirements('requirements.txt'),
    extras_require={'test': requirements('test_requirements.txt')},
    entry_points={
        'console_scripts': [
            'masl = masl.__main__:entry_point'
        ],
    },
    classifiers=[
        'Development Status :: 4 - Beta',
        'Topic :: Software Development',
        'Topic :: Internet',
        'License :: OSI Approved :: Apache Software License',
        'Intended Audience :: Developers',
        'Programming Language :: Python :: Implementation :: CPython',
        'Programming Language :: Python :: 3',
        'Operating System :: MacOS :: MacOS X',
        'Operating System :: Microsoft :: Windows',
        'Operating System :: POSIX',
        'Natural Language :: English',
        'Environment :: Console'
    ],
    python_requires='>=3.6, <4',
    platforms=['posix', 'nt'],
    cmdclass={
        'pycodestyle': PycodestyleCommand,
        'pyflakes': PyflakesCommand,
    },
    zip_safe=True,
)
