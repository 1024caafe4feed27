"""Capability registry: resolve model handles from providers.

Lookups are pure construction. No network call is made and the model id is
only checked against a provider's locally declared catalog, if it has one.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Mapping, TypeVar

from .errors import NoSuchModelError, UnsupportedFunctionalityError
from .logging_utils import get_logger
from .models.base import (
    EmbeddingModel,
    ImageModel,
    LanguageModel,
    Model,
    SpeechModel,
    TranscriptionModel,
)
from .models.types import Capability

ModelFactory = Callable[[str], Model]
M = TypeVar("M", bound=Model)

_LOG = get_logger("registry")


class LookupStatus(str, Enum):
    SUCCESS = "success"
    NO_SUCH_MODEL = "no_such_model"
    NOT_SUPPORTED = "not_supported"


@dataclass(frozen=True)
class LookupResult:
    status: LookupStatus
    model: Model | None = None
    capability: Capability | None = None
    model_id: str | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is LookupStatus.SUCCESS

    def unwrap(self) -> Model:
        """Return the model or raise the matching error."""

        if self.status is LookupStatus.SUCCESS and self.model is not None:
            return self.model
        if self.status is LookupStatus.NOT_SUPPORTED:
            label = self.capability.value if self.capability else "capability"
            raise UnsupportedFunctionalityError(f"{label} models")
        raise NoSuchModelError(
            self.model_id or "",
            capability=self.capability.value if self.capability else None,
        )


class Provider:
    """A vendor: a name plus one model factory per supported capability."""

    def __init__(
        self,
        name: str,
        *,
        language: ModelFactory | None = None,
        embedding: ModelFactory | None = None,
        image: ModelFactory | None = None,
        speech: ModelFactory | None = None,
        transcription: ModelFactory | None = None,
        catalog: Mapping[Capability, Iterable[str]] | None = None,
    ) -> None:
        if not name:
            raise ValueError("provider name must be non-empty")
        self.name = name
        self._factories: dict[Capability, ModelFactory] = {}
        for capability, factory in (
            (Capability.LANGUAGE, language),
            (Capability.EMBEDDING, embedding),
            (Capability.IMAGE, image),
            (Capability.SPEECH, speech),
            (Capability.TRANSCRIPTION, transcription),
        ):
            if factory is not None:
                self._factories[capability] = factory
        self._catalog = (
            {capability: frozenset(ids) for capability, ids in catalog.items()} if catalog else None
        )

    def factory(self, capability: Capability) -> ModelFactory | None:
        return self._factories.get(capability)

    def supports(self, capability: Capability) -> bool:
        return capability in self._factories

    @property
    def capabilities(self) -> tuple[Capability, ...]:
        return tuple(self._factories)

    def knows(self, capability: Capability, model_id: str) -> bool:
        """Whether the local catalog admits ``model_id``; no catalog admits anything."""

        if self._catalog is None:
            return True
        return model_id in self._catalog.get(capability, frozenset())

    def __repr__(self) -> str:
        caps = ",".join(cap.value for cap in self._factories)
        return f"Provider({self.name!r}, capabilities=[{caps}])"


class CapabilityRegistry:
    """Tagged model lookups against a single provider."""

    def __init__(self, provider: Provider) -> None:
        self.provider = provider

    def supports(self, capability: Capability) -> bool:
        return self.provider.supports(capability)

    def lookup(self, capability: Capability, model_id: str) -> LookupResult:
        factory = self.provider.factory(capability)
        if factory is None:
            return LookupResult(
                LookupStatus.NOT_SUPPORTED,
                capability=capability,
                model_id=model_id,
                message=f"provider '{self.provider.name}' has no {capability.value} models",
            )
        if not model_id or not self.provider.knows(capability, model_id):
            return self._no_such_model(capability, model_id)
        try:
            model = factory(model_id)
        except NoSuchModelError:
            return self._no_such_model(capability, model_id)
        return LookupResult(LookupStatus.SUCCESS, model=model, capability=capability, model_id=model_id)

    def _no_such_model(self, capability: Capability, model_id: str) -> LookupResult:
        _LOG.debug("No {} model {!r} for provider {}", capability.value, model_id, self.provider.name)
        return LookupResult(
            LookupStatus.NO_SUCH_MODEL,
            capability=capability,
            model_id=model_id,
            message=str(NoSuchModelError(model_id, provider=self.provider.name, capability=capability.value)),
        )

    def lookup_language_model(self, model_id: str) -> LookupResult:
        return self.lookup(Capability.LANGUAGE, model_id)

    def lookup_embedding_model(self, model_id: str) -> LookupResult:
        return self.lookup(Capability.EMBEDDING, model_id)

    def lookup_image_model(self, model_id: str) -> LookupResult:
        return self.lookup(Capability.IMAGE, model_id)

    def lookup_speech_model(self, model_id: str) -> LookupResult:
        return self.lookup(Capability.SPEECH, model_id)

    def lookup_transcription_model(self, model_id: str) -> LookupResult:
        return self.lookup(Capability.TRANSCRIPTION, model_id)


class ProviderRegistry:
    """Caller-owned set of providers addressed by ``"provider:model"`` references."""

    def __init__(self, providers: Iterable[Provider] = (), *, separator: str = ":") -> None:
        if not separator:
            raise ValueError("separator must be non-empty")
        self.separator = separator
        self._registries: dict[str, CapabilityRegistry] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: Provider) -> None:
        if provider.name in self._registries:
            raise ValueError(f"provider '{provider.name}' is already registered")
        self._registries[provider.name] = CapabilityRegistry(provider)

    def providers(self) -> list[str]:
        return list(self._registries)

    def provider(self, name: str) -> Provider | None:
        registry = self._registries.get(name)
        return registry.provider if registry else None

    def lookup(self, capability: Capability, reference: str) -> LookupResult:
        name, sep, model_id = reference.partition(self.separator)
        registry = self._registries.get(name) if sep else None
        if registry is None:
            return LookupResult(
                LookupStatus.NO_SUCH_MODEL,
                capability=capability,
                model_id=reference,
                message=f"no provider registered for '{reference}'",
            )
        return registry.lookup(capability, model_id)

    def lookup_language_model(self, reference: str) -> LookupResult:
        return self.lookup(Capability.LANGUAGE, reference)

    def lookup_embedding_model(self, reference: str) -> LookupResult:
        return self.lookup(Capability.EMBEDDING, reference)

    def lookup_image_model(self, reference: str) -> LookupResult:
        return self.lookup(Capability.IMAGE, reference)

    def lookup_speech_model(self, reference: str) -> LookupResult:
        return self.lookup(Capability.SPEECH, reference)

    def lookup_transcription_model(self, reference: str) -> LookupResult:
        return self.lookup(Capability.TRANSCRIPTION, reference)

    def _typed(self, capability: Capability, reference: str, model_type: type[M]) -> M:
        model = self.lookup(capability, reference).unwrap()
        if not isinstance(model, model_type):
            raise UnsupportedFunctionalityError(
                f"{capability.value} models (factory returned {type(model).__name__})"
            )
        return model

    def language_model(self, reference: str) -> LanguageModel:
        return self._typed(Capability.LANGUAGE, reference, LanguageModel)

    def embedding_model(self, reference: str) -> EmbeddingModel:
        return self._typed(Capability.EMBEDDING, reference, EmbeddingModel)

    def image_model(self, reference: str) -> ImageModel:
        return self._typed(Capability.IMAGE, reference, ImageModel)

    def speech_model(self, reference: str) -> SpeechModel:
        return self._typed(Capability.SPEECH, reference, SpeechModel)

    def transcription_model(self, reference: str) -> TranscriptionModel:
        return self._typed(Capability.TRANSCRIPTION, reference, TranscriptionModel)
