"""sargen -- Express.js project scaffolding.

Generates layered or modular Express.js backends from Jinja2 templates and
keeps the generated tree in shape as modules, middlewares and database
configuration are added later on.
"""

__version__ = "1.0.0"
