# API Routers - Notary

from notary.routers import health, stellar, tasks, verification_workflows

__all__ = ["health", "stellar", "tasks", "verification_workflows"]
