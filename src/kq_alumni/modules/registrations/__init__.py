"""
Registrations Module

Automatic approval of alumni registrations:
1. Pending registrations are validated against the ERP, oldest first
2. Confirmed registrations are approved and sent a verification email
3. Unconfirmed registrations are retried with exponential backoff
4. Registrations without a staff number, or that exhaust their retries, are
   flagged for manual review by HR (never rejected automatically)

Background Jobs (via APScheduler):
- registrations_approval_processing: business hours every 2 minutes, off
  hours every 15 minutes, weekends every 30 minutes
"""

from .jobs import register_registration_jobs

__all__ = ["register_registration_jobs"]
