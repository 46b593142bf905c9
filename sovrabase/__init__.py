"""
Sovrabase - per-tenant PostgreSQL provisioning on Docker or Kubernetes.

Usage:
    from sovrabase.services.orchestration import get_orchestrator
    from sovrabase.schemas import InstanceOptions

    orchestrator = get_orchestrator()
    info = await orchestrator.create_instance("acme", InstanceOptions(memory="512m", cpus="0.5"))
    print(info.connection_string)
"""

__version__ = "0.1.0"
