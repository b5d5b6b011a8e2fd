#!/usr/bin/env python3
"""
Setup script for the topictrends package.
"""

from setuptools import setup, find_packages
import os

def parse_requirements(filename):
    """Parse a pip requirements file into a list of install_requires."""
    filename = os.path.join(os.path.dirname(os.path.abspath(__file__)), filename)
    if not os.path.exists(filename):
        return []
    with open(filename, "r") as f:
        lines = f.readlines()
    return [
        line.strip()
        for line in lines
        if line.strip() and not line.strip().startswith("#")
    ]

setup(
    name="topictrends",
    version="1.0.0",
    author="topictrends developers",
    description="LDA topic modeling of dated document collections with topic trend analytics",
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_data={"topictrends": ["config.yaml"]},
    include_package_data=True,
    zip_safe=False,
    install_requires=parse_requirements("pip_requirements.txt"),
    extras_require={
        "test": ["pytest"],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
)
