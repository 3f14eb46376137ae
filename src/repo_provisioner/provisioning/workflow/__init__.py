"""Explicit provisioning stages.

The run is modelled as a persisted state machine so that an interrupted or
failed run is inspectable. The persisted snapshot is never used to skip
remote existence checks.
"""

__all__: list[str] = []
