from __future__ import annotations

from pathlib import Path

from setuptools import find_packages, setup


def _read_requirements(name: str = "requirements.txt") -> list[str]:
    requirements_path = Path(__file__).with_name(name)
    if not requirements_path.exists():
        return []
    return [line.strip() for line in requirements_path.read_text(encoding="utf-8").splitlines() if line.strip() and not line.startswith("#")]


setup(
    name="sellerlens",
    version="0.3.0",
    description="SellerLens analytics for Amazon seller transaction reports",
    author="SellerLens",
    python_requires=">=3.10",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=_read_requirements(),
    extras_require={"test": _read_requirements("requirements-dev.txt")},
    include_package_data=True,
    package_data={"sellerlens": ["config/*.yaml"]},
    entry_points={
        "console_scripts": [
            "sellerlens=sellerlens.pipeline:main",
        ]
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
)
