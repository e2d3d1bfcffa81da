"""sargen builder module.

Wraps the external tools a generated project is set up with.

Key classes:
    NpmManager       - npm init / install and package.json edits
    DatabaseManager  - Sequelize install, init and config.json
    GitManager       - git init, commit, remote and push
"""

from .database import DatabaseManager, DatabaseSetupError, detect_db_conf
from .git import GitManager, GitOptions, GitSetupError, GitSetupReport
from .npm import NpmManager

__all__ = [
    # npm
    "NpmManager",
    # Database
    "DatabaseManager",
    "DatabaseSetupError",
    "detect_db_conf",
    # Git
    "GitManager",
    "GitOptions",
    "GitSetupError",
    "GitSetupReport",
]
