"""GitHub repository provisioner.

Ensures a repository, an issue, a pull request and a Projects V2 board exist,
in dependency order:
- configuration loaded from `.env`
- structured logging
- idempotent resolve-or-create for every resource
"""

__version__ = "0.1.0"

from repo_provisioner.provisioning.config import ProvisionerSettings

__all__ = ["__version__", "ProvisionerSettings"]
