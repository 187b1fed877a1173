"""OrbitKeys - API key authentication and authorization.

Issues opaque bearer keys, binds each key to a role carrying a permission
set, and validates both key shape and permission grants on each request.
"""

__version__ = "1.0.0"
