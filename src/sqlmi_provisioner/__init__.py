"""Terraform-style provisioning of Azure SQL Managed Instance encryption settings."""

__version__ = "0.1.0"
