"""
NetBird delayed auto-update.

Gates APT upgrades of a managed package behind a version-aging period: a new
candidate version must stay the unchanged repository candidate for a number
of days before it is installed.
"""

__version__ = "0.3.0"
