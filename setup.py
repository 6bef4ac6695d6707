"""Setup script for panogeo"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

setup(
    name="panogeo",
    version="0.1.0",
    description="Robust planar transform estimation and chaining for image mosaics",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="panogeo Contributors",
    packages=find_packages(include=["panogeo", "panogeo.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.24.0",
        "scipy>=1.10.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "opencv-python>=4.8.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "panogeo=panogeo.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Scientific/Engineering :: Image Processing",
    ],
)
