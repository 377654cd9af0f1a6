"""
shipctl - rolling deployments, rollbacks and one-off tasks for Amazon ECS.

Contains the deploy/rollback state machine, ECR image promotion, the
deployment history store and the one-shot task runner.
"""

__version__ = "0.2.0"
