# This should be only one line. If it must be multi-line, indent the second
# line onwards to keep the PKG-INFO file format intact.
"""Generate, encrypt and rekey age encrypted secrets from declared rules.
"""

from setuptools import find_packages, setup

version = open("src/agesmith/version.txt").read().strip()

setup(
    name="agesmith",
    version=version,
    install_requires=[
        "ConfigUpdater",
        "Jinja2",
        "cryptography",
        "pyrage",
        # ConfigUpdater does not manage its minimum requirements correctly.
        "setuptools>=38.3",
        "py", ],
    extras_require={
        "test": [
            "mock",
            "pytest",
            "pytest-coverage",
            "pytest-instafail",
            "pytest-timeout", ]},
    entry_points="""
        [console_scripts]
            agesmith = agesmith.main:main
    """,
    license="BSD (2-clause)",
    keywords="secrets age encryption",
    classifiers="""\
License :: OSI Approved :: BSD License
Programming Language :: Python
Programming Language :: Python :: 3
Programming Language :: Python :: 3 :: Only
"""[:-1].split("\n"),
    description=__doc__.strip(),
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    packages=find_packages("src"),
    package_dir={"": "src"},
    package_data={"agesmith": ["version.txt"]},
    include_package_data=True,
    zip_safe=False,
    test_suite="agesmith.tests",
    python_requires=">=3.7")
