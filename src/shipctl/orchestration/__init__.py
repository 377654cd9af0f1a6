"""
Workflows driven by the shipctl CLI.

- deploy: promote images, register a new revision, roll the service
- rollback: return the service to the previous recorded revision
- oneshot: run a single task and wait for it to stop
"""
