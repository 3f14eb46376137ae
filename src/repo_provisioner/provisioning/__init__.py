"""Idempotent provisioning of related GitHub resources.

Provides:
- Settings loaded from .env
- Structured logging
- A resolver/provisioner pair per resource kind
- A stage state machine that threads identifiers between steps
"""
