"""DevOps agent: automated code review, test writing and deployment operations.

This package provides:
- A deployment lifecycle controller over the Kubernetes API, with
  revision-based rollback and per-deployment serialization
- An agent task pipeline running typed-step workflows with confirmation
  gating and bounded fan-out
- LLM-based intent routing, code review, test generation and triage
- A FastAPI HTTP surface with Prometheus metrics
"""
