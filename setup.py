from setuptools import find_packages, setup
from pathlib import Path

here = Path(__file__).resolve().parent
requirements_path = here / "requirements.txt"
install_requires = []
if requirements_path.exists():
    install_requires = [
        line for line in requirements_path.read_text().splitlines() if line and not line.startswith("#")
    ]

setup(
    name="stocklens-store",
    version="0.1.0",
    description="Local-first encrypted receipt store with a cached market data layer",
    long_description=(here / "README.md").read_text(),
    long_description_content_type="text/markdown",
    keywords="receipts, encryption, sqlite, alpha vantage, personal finance",
    python_requires=">=3.9",
    install_requires=install_requires,
    extras_require={
        "test": ["pytest", "pytest-asyncio>=0.23"],
        "server": ["uvicorn"],
    },
    packages=find_packages(exclude=["tests", "tests.*", "scripts"]),
    include_package_data=True,
    zip_safe=False,
    platforms="any",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Office/Business :: Financial",
    ],
)
