"""Syn-Syu update guards: disk space pre-flight checks and app updaters."""

from codecs import open
from os import path

from setuptools import setup

here = path.abspath(path.dirname(__file__))

# Get the long description from the README file
with open(path.join(here, "README.rst"), encoding="utf-8") as f:
    long_description = f.read()

test_deps = [
    "pytest>=3",
    "pytest-mock",
    "pytest-structlog",
    "pytest-cov",
]

setup(
    name="synsyu",
    version="1.0",
    description=__doc__,
    long_description=long_description,
    license="ZPL",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "License :: OSI Approved :: Zope Public License",
        "Programming Language :: Python :: 3.10",
        "Topic :: System :: Systems Administration",
    ],
    packages=[
        "synsyu",
        "synsyu.update",
        "synsyu.util",
    ],
    python_requires=">=3.10",
    install_requires=[
        "click",
        "colorama",
        "rich",
        "structlog",
        "typer",
    ],
    zip_safe=False,
    tests_require=test_deps,
    extras_require={"test": test_deps},
    entry_points={
        "console_scripts": [
            "syn-syu=synsyu.update.cli:app",
        ],
    },
)
