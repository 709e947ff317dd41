"""FastAPI Dependencies

Services come from the container on ``app.state``; the acting identity
comes from headers set by the upstream auth layer.
"""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from ..container import Container
from ..core.entities import Actor, ActorRole
from ..core.exceptions import Unauthorized
from ..services import OfferService, TaskLifecycleService, WalletService


def get_container(request: Request) -> Container:
    """Get the service container"""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise RuntimeError("Container not initialized")
    return container


ContainerDep = Annotated[Container, Depends(get_container)]


def get_lifecycle_service(container: ContainerDep) -> TaskLifecycleService:
    return container.lifecycle


def get_offer_service(container: ContainerDep) -> OfferService:
    return container.offers


def get_wallet_service(container: ContainerDep) -> WalletService:
    return container.wallet


def get_actor(
    x_actor_id: Annotated[str, Header()],
    x_actor_role: Annotated[str, Header()] = ActorRole.USER.value,
) -> Actor:
    """Build the Actor from X-Actor-Id / X-Actor-Role"""
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="X-Actor-Id header is required")
    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown actor role: {x_actor_role}")
    return Actor(actor_id=x_actor_id, role=role)


ActorDep = Annotated[Actor, Depends(get_actor)]


def require_role(*roles: ActorRole):
    """Dependency factory: the actor must hold one of ``roles``"""

    def check(actor: ActorDep) -> Actor:
        if actor.role not in roles:
            raise Unauthorized(
                f"Requires role {' or '.join(r.value for r in roles)}",
                actor_id=actor.actor_id,
                role=actor.role.value,
            )
        return actor

    return check


# Type aliases for cleaner dependency injection
LifecycleServiceDep = Annotated[TaskLifecycleService, Depends(get_lifecycle_service)]
OfferServiceDep = Annotated[OfferService, Depends(get_offer_service)]
WalletServiceDep = Annotated[WalletService, Depends(get_wallet_service)]
AdminDep = Annotated[Actor, Depends(require_role(ActorRole.ADMIN))]
SystemDep = Annotated[Actor, Depends(require_role(ActorRole.SYSTEM, ActorRole.ADMIN))]
