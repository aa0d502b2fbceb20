"""
LoyaltyGuard - receipt trust scoring and campaign rule evaluation.

Receipts arrive as chat images, are batched per conversation, scored for
fraud (ACCEPT / REVIEW / REJECT) and matched against campaign reward rules
to produce a points suggestion for human approval.
"""

__version__ = "0.1.0"
