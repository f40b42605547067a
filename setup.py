import os.path
import re

from setuptools import find_packages, setup

try:
    # Import all script providers so that ENTRYPOINTS gets populated.
    from sysunit.scripts import unit  # noqa: F401
    from sysunit.scripts.utils import ENTRYPOINTS
except ImportError:
    # Avoid chicken-and-egg dependency requirements during initial installation.
    # This means you need to re-run setup in order to gain script entrypoints.
    ENTRYPOINTS = []


HERE = os.path.abspath(os.path.dirname(__file__))

README = os.path.join(HERE, "README.rst")


def version():
    with open(os.path.join(HERE, "sysunit", "__init__.py")) as init:
        return re.search(r'^__version__ = "(.+)"$', init.read(), re.M).group(1)


setup(name="sysunit",
      version=version(),
      description="Declarative management of systemd unit enablement, masking and activation.",
      long_description=open(README).read(),
      long_description_content_type="text/x-rst",
      platforms=["Linux"],
      python_requires=">=3.6",
      install_requires=["docopt", "SQLAlchemy>=1.4"],
      packages=find_packages(exclude=["tests"]),
      test_suite="tests",
      entry_points={"console_scripts": ENTRYPOINTS})
