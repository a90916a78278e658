from __future__ import annotations

from pathlib import Path

from setuptools import find_namespace_packages, setup

_ROOT = Path(__file__).resolve().parent
_PACKAGES = ("core", "geometry", "parameters", "runtime", "mesh_refiner")


def _long_description() -> str:
    readme = _ROOT / "README.md"
    return readme.read_text(encoding="utf-8") if readme.is_file() else ""


setup(
    name="mesh-refiner",
    version="0.1.0",
    description="Uniform 1-to-4 refinement of hierarchical triangle meshes.",
    long_description=_long_description(),
    long_description_content_type="text/markdown",
    python_requires=">=3.10",
    packages=find_namespace_packages(
        include=[*_PACKAGES, *(f"{name}.*" for name in _PACKAGES)]
    ),
    py_modules=["main"],
    install_requires=[
        "meshio",
        "numpy",
        "PyYAML",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "mesh-refine=main:main",
            "mesh-scale=main:scale_main",
            "mesh-visualize=main:visualize_main",
        ],
    },
)
