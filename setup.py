from setuptools import setup, find_packages

setup(
    name="wpverify",
    version="0.1.0",
    description="wpverify — weakest-precondition verifier for annotated integer programs",
    packages=find_packages(include=["wpverify", "wpverify.*"]),
    python_requires=">=3.10",
    install_requires=[
        "z3-solver>=4.12.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "wpverify=wpverify.cli:main",
        ],
    },
)
