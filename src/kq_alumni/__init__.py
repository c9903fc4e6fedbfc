"""
KQ Alumni Approval Processing Service

Background processing of Kenya Airways alumni registrations: ERP validation
with exponential backoff, automatic approval and escalation to manual review.
"""

__version__ = "0.1.0"
