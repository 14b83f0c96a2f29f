# Overview: Role variants and the capability table evaluated once per request.

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Closed set of principal roles."""
    PLATFORM_OPERATOR = "platform_operator"
    RETAILER_OPERATOR = "retailer_operator"
    COMPANY_ADMIN = "company_admin"
    COMPANY_MEMBER = "company_member"

    @classmethod
    def parse(cls, value: str) -> "Role":
        try:
            return cls(value)
        except ValueError:
            allowed = ", ".join(r.value for r in cls)
            raise ValueError(f"role must be one of: {allowed}")


class PermissionDeniedError(Exception):
    """Raised when a principal lacks a capability or scope."""
    pass


# Each capability is defined as: (code, description)
CAPABILITY_DEFINITIONS = [
    ("VERIFY_PURCHASES", "Submit purchase verification requests"),
    ("VIEW_TRANSACTIONS", "View purchase decisions within scope"),
    ("VIEW_LINKS", "View company-retailer links within scope"),
    ("MANAGE_LINKS", "Create and deactivate company-retailer links"),
    ("REQUEST_DISCONNECT", "Ask a retailer to sever the company link"),
    ("PROCESS_DISCONNECT", "Approve or reject disconnect requests"),
    ("VIEW_DISCONNECT_REQUESTS", "View disconnect requests within scope"),
    ("VIEW_AUDIT_LOG", "Read the audit trail"),
    ("MANAGE_DIRECTORY", "Create and edit retailers and companies"),
    ("VIEW_USERS", "View user accounts within scope"),
    ("MANAGE_USERS", "Create and edit user accounts within scope"),
]

ROLE_CAPABILITIES: dict[Role, frozenset[str]] = {
    Role.PLATFORM_OPERATOR: frozenset(code for code, _ in CAPABILITY_DEFINITIONS) - {"REQUEST_DISCONNECT"},
    Role.RETAILER_OPERATOR: frozenset({
        "VERIFY_PURCHASES",
        "VIEW_TRANSACTIONS",
        "VIEW_LINKS",
        "PROCESS_DISCONNECT",
        "VIEW_DISCONNECT_REQUESTS",
    }),
    Role.COMPANY_ADMIN: frozenset({
        "VIEW_TRANSACTIONS",
        "VIEW_LINKS",
        "REQUEST_DISCONNECT",
        "VIEW_DISCONNECT_REQUESTS",
        "VIEW_USERS",
        "MANAGE_USERS",
    }),
    Role.COMPANY_MEMBER: frozenset({
        "VIEW_TRANSACTIONS",
        "VIEW_LINKS",
        "VIEW_USERS",
    }),
}

# Machine callers authenticating with an entity API key never get
# administrative capabilities, whatever role they map to.
API_KEY_CAPABILITIES = frozenset({
    "VERIFY_PURCHASES",
    "VIEW_TRANSACTIONS",
    "VIEW_LINKS",
})


def get_all_capability_codes() -> list[str]:
    return [code for code, _ in CAPABILITY_DEFINITIONS]


def role_has_capability(role: Role, code: str) -> bool:
    return code in ROLE_CAPABILITIES.get(role, frozenset())
