"""Backend package for VaultWars, the sealed-code duel."""

from .config import VaultWarsSettings, load_settings
from .errors import VaultWarsError
from .models import CODE_LENGTH, Phase, Probe, Room
from .scoring import score_probe
from .sealed import ConfidentialCompute, EncryptedInput, InMemoryConfidentialCompute, SealedHandle
from .security import generate_token, hash_token
from .service import VaultWarsService, create_service
from .store import InMemoryRoomRepository, PostgresRoomRepository, RoomRepository, create_repository

__all__ = [
    "CODE_LENGTH",
    "ConfidentialCompute",
    "create_repository",
    "create_service",
    "EncryptedInput",
    "generate_token",
    "hash_token",
    "InMemoryConfidentialCompute",
    "InMemoryRoomRepository",
    "load_settings",
    "Phase",
    "PostgresRoomRepository",
    "Probe",
    "Room",
    "RoomRepository",
    "score_probe",
    "SealedHandle",
    "VaultWarsError",
    "VaultWarsService",
    "VaultWarsSettings",
]
