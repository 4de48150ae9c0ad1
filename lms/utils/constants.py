"""Role, status and condition constants shared by models, services and routes."""
from __future__ import annotations

ROLE_MEMBER = "MEMBER"
ROLE_LIBRARIAN = "LIBRARIAN"
ROLE_ADMIN = "ADMIN"
ROLES = (ROLE_MEMBER, ROLE_LIBRARIAN, ROLE_ADMIN)

USER_ACTIVE = "ACTIVE"
USER_INACTIVE = "INACTIVE"
USER_PENDING = "PENDING"
USER_STATUSES = (USER_ACTIVE, USER_INACTIVE, USER_PENDING)

REQUEST_PENDING = "PENDING"
REQUEST_APPROVED = "APPROVED"
REQUEST_REJECTED = "REJECTED"
REQUEST_CANCELLED = "CANCELLED"
REQUEST_STATUSES = (REQUEST_PENDING, REQUEST_APPROVED, REQUEST_REJECTED, REQUEST_CANCELLED)

BORROW_ISSUED = "ISSUED"
BORROW_RETURNED = "RETURNED"
BORROW_OVERDUE = "OVERDUE"
BORROW_STATUSES = (BORROW_ISSUED, BORROW_RETURNED, BORROW_OVERDUE)
ACTIVE_BORROW_STATUSES = (BORROW_ISSUED, BORROW_OVERDUE)

CONDITION_GOOD = "Good"
CONDITION_DAMAGED = "Damaged"
CONDITION_LOST = "Lost"
RETURN_CONDITIONS = (CONDITION_GOOD, CONDITION_DAMAGED, CONDITION_LOST)

PERM_APPROVE_REQUESTS = "can_approve_requests"
PERM_ISSUE_RETURNS = "can_issue_returns"
PERM_REVOKE_MEMBERSHIP = "can_revoke_membership"
PERMISSIONS = (PERM_APPROVE_REQUESTS, PERM_ISSUE_RETURNS, PERM_REVOKE_MEMBERSHIP)

STOCK_OUT = "OUT OF STOCK"
STOCK_LOW = "LOW STOCK"
STOCK_IN = "IN STOCK"
LOW_STOCK_THRESHOLD = 3
LOW_STOCK_PERCENT = 30

MEMBER_CODE_FORMAT = "MEM-{:06d}"

__all__ = [
    "ROLE_MEMBER",
    "ROLE_LIBRARIAN",
    "ROLE_ADMIN",
    "ROLES",
    "USER_ACTIVE",
    "USER_INACTIVE",
    "USER_PENDING",
    "USER_STATUSES",
    "REQUEST_PENDING",
    "REQUEST_APPROVED",
    "REQUEST_REJECTED",
    "REQUEST_CANCELLED",
    "REQUEST_STATUSES",
    "BORROW_ISSUED",
    "BORROW_RETURNED",
    "BORROW_OVERDUE",
    "BORROW_STATUSES",
    "ACTIVE_BORROW_STATUSES",
    "CONDITION_GOOD",
    "CONDITION_DAMAGED",
    "CONDITION_LOST",
    "RETURN_CONDITIONS",
    "PERM_APPROVE_REQUESTS",
    "PERM_ISSUE_RETURNS",
    "PERM_REVOKE_MEMBERSHIP",
    "PERMISSIONS",
    "STOCK_OUT",
    "STOCK_LOW",
    "STOCK_IN",
    "LOW_STOCK_THRESHOLD",
    "LOW_STOCK_PERCENT",
    "MEMBER_CODE_FORMAT",
]
