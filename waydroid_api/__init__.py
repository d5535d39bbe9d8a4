"""Control-plane HTTP API for a Waydroid Android runtime."""

__version__ = "3.0.0"

API_VERSION = "3.0"
SUPPORTED_VERSIONS = ("1.0", "2.0", "3.0")
# Older clients have no path prefix of their own and use the unversioned routes
UNVERSIONED_ONLY = ("1.0", "2.0")
