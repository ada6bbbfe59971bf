"""
Domain layer for furniture model conversion.
Provides interfaces (gateways) and a service that stores uploads, tracks
their status and transcodes them to GLTF, abstracting object storage, the
database and the Assimp CLI so front-ends (HTTP or others) can use the same
core logic.
"""

from .interfaces import ConverterGateway, FurnitureStore, ObjectStorage
from .service import ConversionService, FurnitureRecord, FurnitureStatus
