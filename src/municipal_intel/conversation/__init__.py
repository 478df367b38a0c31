"""
Conversational layer.

- scope_classifier: in-/out-of-domain verdict from the external model
- query_analyzer: ordered rule cascade producing intent, query type and data needs
- context: per-request analytical context (filtered residents and reports)
- agents: deterministic answers per intent
- orchestrator: pipeline state machine and response arbitration
"""
