"""Terraform-style plan/apply provisioning for AWS resources."""

__version__ = "0.1.0"
