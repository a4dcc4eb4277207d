import builtins

import setuptools
from setuptools import setup


def setup_package():
    builtins.__RELEASEMINER_SETUP__ = True
    import releaseminer

    with open("README.md", "r") as f:
        readme = f.read()

    setup(
        name="releaseminer",
        version=releaseminer.__version__,
        license="AGPL",
        description="Dependency-gated download and extraction engine for versioned software releases",
        long_description=readme,
        long_description_content_type="text/markdown",
        packages=setuptools.find_packages(exclude=["tests"]),
        entry_points={"console_scripts": ["releaseminer = releaseminer.cmdline:main"]},
        install_requires=[
            "requests>=2.0.0,<3",
            "click>=8",
            "python-dotenv",
            "pyaml_env",
            "pydantic>=2.0.0",
        ],
        extras_require={"test": ["pytest>=6.2.5"]},
    )


if __name__ == "__main__":
    setup_package()
