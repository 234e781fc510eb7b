#!/usr/bin/env python3

from setuptools import setup, find_packages

setup(
    name="logviewer",
    version="1.0.0",
    description="Local Elasticsearch and Kibana provisioner",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.9",
    extras_require={
        'test': ['pytest'],
    },
    entry_points={
        'console_scripts': [
            'logviewer=logviewer.cli:main',
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Installation/Setup",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
