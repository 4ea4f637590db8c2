from setuptools import find_packages, setup

setup(
    name="duscan",
    version="0.1.0",
    description="Responsive, cancellable disk-usage scanner with sparse-file aware sizing",
    python_requires=">=3.11",
    packages=find_packages(include=["duscan", "duscan.*"]),
    install_requires=[
        "result>=0.17",
        "rich>=13.0",
    ],
    extras_require={
        "test": ["pytest>=8.0"],
    },
    entry_points={
        "console_scripts": [
            "duscan=duscan.cli:main",
        ],
    },
)
