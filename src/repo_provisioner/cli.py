"""Console entrypoint.

The CLI is implemented in `repo_provisioner.provisioning.main`.
"""

from __future__ import annotations

from repo_provisioner.provisioning.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
