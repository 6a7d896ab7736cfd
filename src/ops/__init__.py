"""Provisioning-time operations (custom resource handlers)."""
