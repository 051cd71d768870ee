"""
Guard layer: turns access decisions into UI/route outcomes.

Guards contain no decision logic of their own. They ask can_access() or
the EntitlementResolver and map the answer to ALLOW / DENY / PENDING.
PENDING means the inputs are still loading: render a placeholder, do not
redirect.

FastAPI usage:
    from tenant_access.platform.guards import require_role, require_feature

    @router.post("/orders/{order_id}/cancel")
    async def cancel_order(
        order_id: str,
        principal: Principal = Depends(require_role(Role.MANAGER)),
    ):
        ...

    @router.get("/reports/bcg")
    async def bcg_matrix(principal: Principal = Depends(require_feature("feature_bcg_matrix"))):
        ...

The request is expected to carry request.state.principal (set by the
authentication layer) and the app an entitlement_resolver on app.state.
"""

import logging
from enum import Enum
from typing import Callable, Iterable, Optional, Union

from fastapi import HTTPException, Request, status

from tenant_access.constants.roles import Role
from tenant_access.platform.principal import Principal, PrincipalState
from tenant_access.platform.rbac import can_access

logger = logging.getLogger(__name__)


class GuardOutcome(str, Enum):
    """What a guard should do with the content it wraps."""
    ALLOW = "allow"
    DENY = "deny"
    PENDING = "pending"


def evaluate_role_guard(
    state: PrincipalState,
    required_roles: Iterable[Union[Role, str]],
) -> GuardOutcome:
    """Role guard outcome; PENDING while the principal's role is loading."""
    if state.loading:
        return GuardOutcome.PENDING
    if can_access(state.principal, required_roles):
        return GuardOutcome.ALLOW
    return GuardOutcome.DENY


def evaluate_feature_guard(granted: Optional[bool], loading: bool = False) -> GuardOutcome:
    """Feature guard outcome; granted=None means the check has not resolved."""
    if loading or granted is None:
        return GuardOutcome.PENDING
    return GuardOutcome.ALLOW if granted else GuardOutcome.DENY


def get_request_principal(request: Request) -> Principal:
    """Read the principal placed on the request by the authentication layer."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return principal


def require_role(*roles: Union[Role, str]) -> Callable:
    """
    Dependency factory requiring the principal to rank at least the lowest
    of the given roles.

    Raises 403 on denial.
    """
    required = tuple(roles)

    async def dependency(request: Request) -> Principal:
        principal = get_request_principal(request)
        outcome = evaluate_role_guard(PrincipalState(principal=principal), required)
        if outcome is not GuardOutcome.ALLOW:
            logger.warning(
                "Role guard denied request",
                extra={
                    "account_id": principal.account_id,
                    "tenant_id": principal.tenant_id,
                    "role": getattr(principal.role, "value", principal.role),
                    "required_roles": [getattr(r, "value", r) for r in required],
                    "path": request.url.path,
                    "method": request.method,
                },
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action",
            )
        return principal

    return dependency


def require_feature(flag: str) -> Callable:
    """
    Dependency factory requiring the principal's tenant to be entitled to flag.

    Raises 402 on denial, matching plan-upgrade semantics.
    """

    async def dependency(request: Request) -> Principal:
        principal = get_request_principal(request)
        resolver = getattr(request.app.state, "entitlement_resolver", None)
        if resolver is None:
            logger.error("No entitlement resolver configured; denying", extra={"flag": flag})
            granted = False
        else:
            granted = await resolver.has_feature(principal.tenant_id, flag)

        if evaluate_feature_guard(granted) is not GuardOutcome.ALLOW:
            logger.info(
                "Feature guard denied request",
                extra={
                    "account_id": principal.account_id,
                    "tenant_id": principal.tenant_id,
                    "flag": flag,
                    "path": request.url.path,
                },
            )
            raise HTTPException(
                status_code=status.HTTP_402_PAYMENT_REQUIRED,
                detail={"error": "feature_not_entitled", "feature": flag},
            )
        return principal

    return dependency
