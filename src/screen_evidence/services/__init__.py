"""
Evidence services: artifact identity, capture lifecycle and evidence orchestration.

Import submodules directly, e.g.
``from screen_evidence.services.evidence_orchestrator import ForensicOrchestrator``.
"""
