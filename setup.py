from setuptools import setup, find_packages

setup(
    name="chunkpress",
    version="0.1.0",
    packages=find_packages(include=["chunkpress", "chunkpress.*"]),
    python_requires=">=3.10",
    install_requires=[
        "requests",
        "pyyaml",
    ],
    extras_require={
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "chunkpress=chunkpress.cli:main",
        ],
    },
    description="Send source files to a completion service in numbered parts "
                "and apply the returned edits with rollback and checkpoints.",
)
