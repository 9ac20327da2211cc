from setuptools import setup, find_packages
import sys

if sys.version_info < (3, 9):
    print("Please use python3.9 or newer.")
    sys.exit(1)


requires = [
    "pyjwt",
    "requests",
    "zope.interface",
    "sqlalchemy>=2.0",
    "pyramid>=2.0",
]

postgresql_deps = ["psycopg2-binary"]

test_deps = ["pytest", "webob"]


setup(
    name="shoplink",
    version="0.1a",
    description="Connect shopify shops to embedded host experiences.",
    install_requires=requires,
    packages=find_packages(exclude=["tests", "tests.*"]),
    package_dir={"shoplink": "shoplink"},
    include_package_data=True,
    zip_safe=False,
    extras_require={
        "postgresql": postgresql_deps,
        "test": test_deps,
        "dev": ["flake8", "black", "waitress"] + test_deps,
    },
    entry_points={
        "paste.app_factory": ["main = shoplink.web:main"],
    },
)
