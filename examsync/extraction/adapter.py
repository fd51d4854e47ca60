"""
Extraction adapter contract and the per-provider registry.

The portal login and page automation live outside this package; an adapter only
has to hand back RawExamReport objects. Adapters can build them from the portal's
question-wise JSON and report HTML with examsync.extraction.decoders.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol
from examsync.core.config import settings
from examsync.core.exceptions import UnsupportedProviderError
from examsync.extraction.types import ScrapeProgress, ScrapeResult, SyncPlan

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ScrapeProgress], None]


@dataclass
class ExternalCredentials:
    provider: str
    username: str
    password: str
    verification_code: Optional[str] = None

    def __repr__(self) -> str:
        return f"ExternalCredentials(provider={self.provider!r}, username={self.username!r})"


class ExtractionAdapter(Protocol):
    provider: str

    def fetch_reports(self, credentials: ExternalCredentials, plan: SyncPlan,
                      on_progress: Optional[ProgressCallback] = None) -> ScrapeResult:
        """Log in and return reports for the exams the plan asks for.

        Raises CredentialError when the portal rejects the login.
        """
        ...


_adapters: Dict[str, ExtractionAdapter] = {}


def register_adapter(adapter: ExtractionAdapter) -> None:
    if adapter.provider not in settings.SUPPORTED_PROVIDERS:
        raise UnsupportedProviderError(adapter.provider)
    _adapters[adapter.provider] = adapter
    logger.info("Registered extraction adapter for %s", adapter.provider)


def unregister_adapter(provider: str) -> None:
    _adapters.pop(provider, None)


def get_adapter(provider: str) -> ExtractionAdapter:
    adapter = _adapters.get(provider)
    if adapter is None or provider not in settings.SUPPORTED_PROVIDERS:
        raise UnsupportedProviderError(provider)
    return adapter
