from utils.embedder import Embedder
from utils.db_manager import DatabaseManager
from utils.pumpkin import PumpkinHunt, PumpkinState

__all__ = [
    "Embedder",
    "DatabaseManager",
    "PumpkinHunt",
    "PumpkinState",
]
