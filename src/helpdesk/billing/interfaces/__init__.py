"""
Billing Interfaces Layer
========================

Interface adapters (controllers) for the billing module.
"""

from helpdesk.billing.interfaces.controllers import billing_router

__all__ = ["billing_router"]
