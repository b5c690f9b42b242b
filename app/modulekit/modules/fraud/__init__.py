"""
Fraud checks used before money leaves the system.

Pure scoring/fingerprint helpers live in `scoring`, rate counters in `velocity`,
and `service.assess_request` composes them into a single Assessment.
"""
