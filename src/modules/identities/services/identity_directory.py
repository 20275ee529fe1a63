from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.orm import Session

from modules.common.errors import NotFoundError
from modules.identities.models.identity import Identity, normalize_rut


@dataclass(frozen=True)
class IdentityInfo:
    id: str
    name: str
    rut: str
    enabled: bool


class IdentityDirectory(Protocol):
    def get_identity(self, identity_id: str) -> IdentityInfo:
        ...

    def find_by_rut(self, rut: str) -> IdentityInfo:
        ...


class SqlIdentityDirectory:
    """Reads identities from the local `identities` table"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_identity(self, identity_id: str) -> IdentityInfo:
        identity = self.db.get(Identity, identity_id)
        if identity is None:
            raise NotFoundError(f"Identidad {identity_id} no encontrada")
        return _to_info(identity)

    def find_by_rut(self, rut: str) -> IdentityInfo:
        identity = self.db.query(Identity).filter(Identity.rut == normalize_rut(rut)).first()
        if identity is None:
            raise NotFoundError(f"Trabajador con RUT {rut} no encontrado")
        return _to_info(identity)


def _to_info(identity: Identity) -> IdentityInfo:
    return IdentityInfo(
        id=identity.id,
        name=identity.name,
        rut=identity.rut,
        enabled=bool(identity.enabled),
    )
