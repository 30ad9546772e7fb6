"""
crisiswatch -- Crisis-Risk Detection & Intervention Pipeline
===========================================================

Multi-signal crisis-risk detection for conversational support services.
Each incoming user message is evaluated by four independent analyzers
(lexical, sentiment, behavioral-pattern, model-based).  Their outputs are
fused into one risk decision, and graduated intervention steps (resource
provisioning, professional alerting, emergency escalation, follow-up) run
with per-step fault isolation and a hash-chained audit trail.

DISCLAIMER: Risk levels produced by this package are workflow routing
signals.  They are not clinical assessments or diagnoses, and every
elevated result is intended for review by qualified professionals.
"""

__version__ = "0.1.0"
