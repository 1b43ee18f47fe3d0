"""Rolling retirement of Kubernetes nodes by role."""

__version__ = "0.1.0"
