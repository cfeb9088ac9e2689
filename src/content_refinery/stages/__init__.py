"""Stage capabilities - contracts, retrying client and HTTP backend."""

from .backend import HttpCapabilityBackend
from .client import CapabilityBackend, StageClient, StageError, StageResult
from .contracts import STAGE_CONTRACTS, StageKind

__all__ = [
	"CapabilityBackend",
	"HttpCapabilityBackend",
	"STAGE_CONTRACTS",
	"StageClient",
	"StageError",
	"StageKind",
	"StageResult",
]
