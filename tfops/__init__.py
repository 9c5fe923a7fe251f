"""Terraform CI/CD pipeline steps for GitHub Actions."""

__version__ = "0.1.0"
