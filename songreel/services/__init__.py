"""Pipeline services: stage handlers, completion listener, orchestrator.

Modules are imported directly (``from songreel.services.orchestrator import
PipelineOrchestrator``); handlers, listener and orchestrator depend on each
other in that order.
"""
