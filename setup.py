"""Install the journal federation service."""

from setuptools import setup, find_packages

setup(
    name='journal-federation',
    version='0.1.0',
    packages=find_packages(exclude=['*tests*']),
    install_requires=[
        "flask",
        "flask-sqlalchemy>=3.0",
        "pyjwt",
        "sqlalchemy>=1.4",
        "requests",
        "pytz",
        "python-json-logger>=3.1",
        "filetype",
        "nh3",
    ],
    extras_require={
        "test": ["pytest"],
    },
    zip_safe=False
)
