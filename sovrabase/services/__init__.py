"""
Services Module

This module contains the backend services for Sovrabase.

Key Submodules:
- orchestration: Database instance orchestration (Docker/K8s)

Usage:
    from sovrabase.services.orchestration import get_orchestrator
"""
