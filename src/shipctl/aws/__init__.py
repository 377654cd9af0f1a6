"""
AWS building blocks for shipctl.

This package contains the ECS/ECR/SSM facing components:
- client management
- task definition revision resolution
- ECR image promotion
- task definition drafting and registration
- service updates and convergence polling
"""
