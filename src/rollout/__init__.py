"""
Rollout - Deployment orchestration for a containerized web application on AWS.

Subpackages:
- rollout.core: Errors, result envelope, logging, hashing
- rollout.deploy: The gated deployment pipeline and its AWS adapters
- rollout.cli: The ``rollout`` command line
"""

__version__ = "0.1.0"
