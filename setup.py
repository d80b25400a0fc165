#!/usr/bin/env python
from setuptools import setup


setup(
    name="recmock",
    version="0.1.0",
    description="Record, replay and analyze test doubles with soft, "
                "accumulated expectation failures.",
    license="BSD",
    py_modules=["recmock"],
    python_requires=">=3.6",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: BSD License",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Topic :: Software Development :: Testing",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
