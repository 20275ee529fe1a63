# create_tables.py
import logging

from database import engine, Base
# Importa todos los modelos para que se registren con Base
from modules.identities.models.identity import Identity
from modules.pins.models.pin_credential import PinCredential
from modules.signatures.models.signature import SignatureEvent, SignatureDispute
from modules.signature_requests.models.signature_request import SignatureRequest, RequiredSigner

logger = logging.getLogger(__name__)


def crear_tablas():
    """Crea todas las tablas en la base de datos"""
    logger.info("Tablas a crear: %s", list(Base.metadata.tables.keys()))
    Base.metadata.create_all(bind=engine)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    crear_tablas()
