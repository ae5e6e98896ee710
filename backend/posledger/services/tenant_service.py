"""
Multi-Tenant Service: Tenant Context and Scoping Helpers

WHY: Every read and write in the transaction chain is scoped to a company
and, for orders, invoices, returns and journal entries, to a branch. The
context is resolved once per request and passed explicitly to services so
that background callers and tests can supply it without a request.

SECURITY INVARIANTS:
1. A branch id taken from a request must belong to the request's company
2. Writes to branch-scoped data require a branch; without one they fail
3. List reads without a branch return nothing rather than everything
4. Entities outside the caller's scope are reported as "not found"

USAGE:
    from posledger.services.tenant_service import require_branch, scope_to_branch

    branch_id = require_branch(tenant, "create invoice")
    query = scope_to_branch(db.session.query(Invoice), Invoice, tenant)
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import false

from ..extensions import db
from ..models import Branch, Company
from ..validation import InvalidOperationError


class TenantAccessError(InvalidOperationError):
    """Raised when an operation lacks, or reaches outside, its tenant context."""
    pass


@dataclass(frozen=True)
class TenantContext:
    company_id: int | None = None
    branch_id: int | None = None
    user_id: int | None = None
    role: str | None = None

    @property
    def has_branch(self) -> bool:
        return self.branch_id is not None

    @property
    def actor(self) -> str:
        """Audit label for created_by / received_by columns."""
        return f"user:{self.user_id}" if self.user_id is not None else "System"


def require_branch(tenant: TenantContext, action: str = "perform this operation") -> int:
    """
    Branch id of the caller, for branch-scoped writes.

    Raises:
        TenantAccessError when the caller has no branch context
    """
    if tenant is None or tenant.branch_id is None:
        raise TenantAccessError(
            f"Cannot {action} without branch context. User must be assigned to a branch."
        )
    return tenant.branch_id


def scope_to_branch(query, model, tenant: TenantContext):
    """
    Restrict a query to the caller's branch.

    Without a branch the query matches nothing.
    """
    if tenant is None or tenant.branch_id is None:
        return query.filter(false())
    return query.filter(model.branch_id == tenant.branch_id)


def scope_to_company(query, model, tenant: TenantContext):
    """Restrict a company-wide query (customers) to the caller's company."""
    if tenant is None or tenant.company_id is None:
        return query
    return query.filter(model.company_id == tenant.company_id)


def build_tenant_context(
    *,
    user_id: int | None,
    company_id: int | None,
    branch_id: int | None,
    role: str | None = None,
) -> TenantContext:
    """
    Validate claimed tenant ids and build the context.

    - an unknown or inactive company is rejected
    - a branch must exist and belong to the company; without a company
      claim the branch's own company is used

    Raises:
        TenantAccessError on any mismatch (message never reveals which
        company a foreign branch belongs to)
    """
    if company_id is not None:
        company = db.session.get(Company, company_id)
        if not company or not company.is_active:
            raise TenantAccessError("Company not found")

    if branch_id is not None:
        branch = db.session.get(Branch, branch_id)
        if not branch or (company_id is not None and branch.company_id != company_id):
            raise TenantAccessError("Branch not found")
        if company_id is None:
            company_id = branch.company_id

    return TenantContext(company_id=company_id, branch_id=branch_id, user_id=user_id, role=role)
