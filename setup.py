"""
Setup file.
"""

import os

from setuptools import find_packages, setup

URL = "https://github.com/zackees/capbridge"
KEYWORDS = "ffi bridge swift kotlin jni ios android capability toolchain build"
HERE = os.path.dirname(os.path.abspath(__file__))


if __name__ == "__main__":
    setup(
        name="capbridge",
        version="0.1.0",
        description="Native capability bridges with a uniform async facade",
        maintainer="Zachary Vorhies",
        keywords=KEYWORDS,
        url=URL,
        python_requires=">=3.10",
        package_dir={"": "src"},
        packages=find_packages(where="src"),
        install_requires=["psutil>=5.9"],
        extras_require={"test": ["pytest>=7.0"]},
        entry_points={"console_scripts": ["capb=capbridge.cli:main"]},
        include_package_data=True)
