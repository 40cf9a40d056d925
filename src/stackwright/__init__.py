"""Stackwright - compile component diagrams into runnable service stacks.

This package parses PlantUML component diagrams, resolves every component
against a registry of reusable manifests, generates Docker Compose or
Kubernetes stack artifacts, and drives the external tooling that deploys,
probes and tears those stacks down.
"""

__version__ = "0.9.0"
