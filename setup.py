"""
Setup script for the Hydrogen Credit Registry
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="hydrogen-credit-registry",
    version="1.0.0",
    author="Hydrogen Credit Registry Developers",
    description="REST API for issuing, transferring, retiring and auditing renewable-hydrogen credits settled on a ledger",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["hc_registry", "hc_registry.*"]),
    package_data={
        "hc_registry": [
            "static/descriptions/*.md",
            "static/templates/*.jinja",
            "ledger/abi/*.json",
            "core/alembic/*.py",
            "core/alembic/*.mako",
            "core/alembic/versions/*.py",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Framework :: FastAPI",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.10",
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.4",
            "httpx>=0.25",
        ],
    },
    entry_points={
        "console_scripts": [
            "hc-api=hc_registry.main:main",
            "hc-reconcile=hc_registry.credit.reconciliation_task:main",
        ],
    },
)
