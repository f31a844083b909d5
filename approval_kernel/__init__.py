"""
Approval Kernel

Routes compliance-validation outcomes through configurable, multi-level
approval workflows with:
- Rule-driven workflow selection
- Approval matrix authority and quorum resolution
- An optimistic-concurrency approval state machine
- SLA tracking with automatic escalation
"""

__version__ = "0.1.0"
