from setuptools import setup  # type: ignore

setup(
    name="cnaggregate",
    version="0.1.0",
    description="Aggregate per-patient copy-number segmentations into a unioned segment matrix",
    package_dir={"cnaggregate": "python/cnaggregate"},
    packages=["cnaggregate"],
    python_requires=">=3.10",
    install_requires=[
        "msgspec",
        "numpy",
        "pandas>=2.1",
        "pyarrow",
        "ruamel.yaml",
    ],
    extras_require={
        "test": ["pytest", "pytest-mock"],
    },
    zip_safe=False,
)
