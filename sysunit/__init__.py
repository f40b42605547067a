"""
Declarative management of systemd units: keep a unit enabled, masked or running as declared, and
put it back the way it was found once no longer managed.
"""

__version__ = "0.3.0"
