from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    name="entity-authority",
    version="0.1.0",
    description="Authoritative ER model loading with salted provenance signatures",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Entity Authority Contributors",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "duckdb>=0.9.0",
        "tqdm>=4.65.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Code Generators",
    ],
    keywords="er-diagram mermaid provenance data-model validation",
)
