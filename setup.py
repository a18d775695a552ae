import setuptools

with open("README.md", "r") as fh:
    long_description = fh.read()

version = {}
with open(r"acmeclient/version.py") as fp:
    exec(fp.read(), version)

dependencies = [
    "acme>=2.0.0",
    "aiohttp>=3.9",
    "cryptography>=42.0.0",
    "josepy>=1.13.0",
    "pydantic>=2.0",
    "pydantic-settings>=2.0",
    "pyrfc3339>=1.1",
    "PyYAML>=6.0",
    "yarl>=1.9",
]

test_dependencies = [
    "pytest>=7.0",
    "pytest-asyncio>=0.23",
]

setuptools.setup(
    name="acmeclient",
    version=version["__version__"],
    description="An asynchronous ACME (RFC 8555) client for DNS-01 based certificate acquisition",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    install_requires=dependencies,
    extras_require={"test": test_dependencies},
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.11",
)
