"""Translation gateway abstractions."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from .errors import GatewayConfigurationError, TranslationGatewayError

if TYPE_CHECKING:  # pragma: no cover
    from .configuration import DocbridgeSettings

logger = logging.getLogger(__name__)


def _same_language(target_language: str, source_language: str | None) -> bool:
    if not source_language:
        return False
    return target_language.strip().casefold() == source_language.strip().casefold()


class TranslationGateway(ABC):
    """Abstract adapter for remote translation services.

    Subclasses only implement :meth:`_translate_texts`, which receives the
    non-empty texts of a batch. The public :meth:`translate_batch` owns the
    filtering policy and guarantees a result of the same length as its input.
    """

    name = "gateway"
    default_max_items = 25
    default_max_request_size = 5000

    def __init__(
        self,
        *,
        max_items: int | None = None,
        max_request_size: int | None = None,
    ) -> None:
        self._max_items = (
            max_items if max_items is not None else self.default_max_items
        )
        self._max_request_size = (
            max_request_size
            if max_request_size is not None
            else self.default_max_request_size
        )

    @property
    def max_items(self) -> int:
        """Maximum number of strings sent in one remote call."""

        return self._max_items

    @property
    def max_request_size(self) -> int:
        """Maximum cumulative characters sent in one remote call."""

        return self._max_request_size

    def translate_batch(
        self,
        texts: Sequence[Optional[str]],
        *,
        target_language: str,
        source_language: str | None = None,
    ) -> List[str]:
        """Translate one batch, returning a list aligned with ``texts``."""

        if _same_language(target_language, source_language):
            return [text or "" for text in texts]

        positions = [idx for idx, text in enumerate(texts) if text]
        results = [""] * len(texts)
        if not positions:
            return results

        pending = [texts[idx] for idx in positions]
        translated = self._translate_texts(
            pending,  # type: ignore[arg-type]
            target_language=target_language,
            source_language=source_language or None,
        )
        if len(translated) != len(pending):
            raise TranslationGatewayError(
                f"{self.name} returned {len(translated)} translations "
                f"for {len(pending)} texts."
            )

        for idx, value in zip(positions, translated):
            results[idx] = value
        return results

    @abstractmethod
    def _translate_texts(
        self,
        texts: List[str],
        *,
        target_language: str,
        source_language: str | None,
    ) -> List[str]:
        """Translate non-empty texts and return them in the same order."""


class EchoGateway(TranslationGateway):
    """A gateway that returns the original text (useful for testing)."""

    name = "echo"

    def _translate_texts(
        self,
        texts: List[str],
        *,
        target_language: str,
        source_language: str | None,
    ) -> List[str]:
        return list(texts)


class OpenAIGateway(TranslationGateway):
    """Translation gateway that uses OpenAI chat models."""

    name = "openai"
    DEFAULT_MODEL = "gpt-5-mini"
    default_max_items = 50
    default_max_request_size = 4000

    SYSTEM_PROMPT = (
        "You are a professional translator. Return only JSON. "
        "Translate every provided text segment into the requested language. "
        "Preserve formatting, placeholders, numbers, whitespace at the edges "
        "and markup. Respond strictly with an object shaped as "
        '{"translations": [{"id": "...", "translated": "..."}]} containing '
        "exactly one entry per input id. "
        "Do not merge, split, or reorder segments. Do not add commentary. "
        "Do not wrap the JSON in markdown code fences."
    )

    def __init__(
        self,
        *,
        settings: "DocbridgeSettings | None" = None,
        model: str | None = None,
        debug: bool = False,
        client: Any = None,
        max_items: int | None = None,
        max_request_size: int | None = None,
    ) -> None:
        super().__init__(max_items=max_items, max_request_size=max_request_size)
        self.debug = debug
        self.settings = settings
        if client is not None:
            self._client = client
            self._default_model = self.DEFAULT_MODEL
        else:
            self._client, self._default_model = self._build_client()
        self.model = model or self._default_model

    def _build_client(self) -> tuple[Any, str]:
        settings = self.settings
        if settings is None:
            raise GatewayConfigurationError(
                "OpenAI configuration missing. Set OPENAI_API_KEY or choose a "
                "different gateway."
            )
        if settings.LLM_PROVIDER == "azure_openai":
            return self._build_azure_client(settings)
        return self._build_openai_client(settings)

    def _build_openai_client(self, settings: "DocbridgeSettings") -> tuple[Any, str]:
        if not settings.OPENAI_API_KEY:
            raise GatewayConfigurationError(
                "OpenAI configuration missing. Set OPENAI_API_KEY or choose a "
                "different gateway."
            )
        from openai import OpenAI

        client = OpenAI(
            api_key=settings.OPENAI_API_KEY,
            timeout=settings.DOCBRIDGE_REQUEST_TIMEOUT,
            max_retries=settings.DOCBRIDGE_TRANSPORT_RETRIES,
        )
        return client, settings.OPENAI_MODEL or self.DEFAULT_MODEL

    def _build_azure_client(self, settings: "DocbridgeSettings") -> tuple[Any, str]:
        missing = [
            name
            for name, value in {
                "AZURE_OPENAI_API_KEY": settings.AZURE_OPENAI_API_KEY,
                "AZURE_OPENAI_ENDPOINT": settings.AZURE_OPENAI_ENDPOINT,
                "AZURE_OPENAI_API_VERSION": settings.AZURE_OPENAI_API_VERSION,
                "AZURE_OPENAI_DEPLOYMENT_NAME": settings.AZURE_OPENAI_DEPLOYMENT_NAME,
            }.items()
            if not value
        ]
        if missing:
            raise GatewayConfigurationError(
                "Azure OpenAI configuration incomplete. Please set: "
                + ", ".join(missing)
                + "."
            )

        from openai import AzureOpenAI

        client = AzureOpenAI(
            api_key=settings.AZURE_OPENAI_API_KEY,
            api_version=settings.AZURE_OPENAI_API_VERSION,
            azure_endpoint=settings.AZURE_OPENAI_ENDPOINT,
            timeout=settings.DOCBRIDGE_REQUEST_TIMEOUT,
            max_retries=settings.DOCBRIDGE_TRANSPORT_RETRIES,
        )
        return client, settings.AZURE_OPENAI_DEPLOYMENT_NAME  # type: ignore[return-value]

    def _translate_texts(
        self,
        texts: List[str],
        *,
        target_language: str,
        source_language: str | None,
    ) -> List[str]:
        payload = [
            {"id": str(position), "text": text}
            for position, text in enumerate(texts)
        ]
        user_prompt = {
            "target_language": target_language,
            "source_language": source_language,
            "segments": payload,
        }
        self._log_debug("gateway.request.payload", user_prompt)

        response_items = self._invoke_model(
            system_prompt=self.SYSTEM_PROMPT,
            user_payload=user_prompt,
            model=self.model,
        )
        self._log_debug("gateway.response.items", response_items)

        mapping: Dict[str, str] = {}
        for item in response_items:
            if not isinstance(item, dict):
                raise TranslationGatewayError(
                    "Translation gateway response malformed: expected objects."
                )
            segment_id = item.get("id")
            translated = item.get("translated")
            if isinstance(segment_id, int):
                segment_id = str(segment_id)
            if not isinstance(segment_id, str) or not isinstance(translated, str):
                raise TranslationGatewayError(
                    "Translation gateway response malformed: missing fields."
                )
            mapping[segment_id] = translated

        missing = [entry["id"] for entry in payload if entry["id"] not in mapping]
        if missing:
            raise TranslationGatewayError(
                "Translation gateway response missing segments: " + ", ".join(missing)
            )
        return [mapping[entry["id"]] for entry in payload]

    def _invoke_model(
        self,
        *,
        system_prompt: str,
        user_payload: dict,
        model: str,
    ) -> list[dict[str, Any]]:
        """Call the OpenAI Responses API and return structured JSON data."""

        try:
            response = self._client.responses.create(
                model=model,
                input=[
                    {
                        "role": "system",
                        "content": [
                            {"type": "input_text", "text": system_prompt},
                        ],
                    },
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "input_text",
                                "text": json.dumps(user_payload, ensure_ascii=False),
                            }
                        ],
                    },
                ],
            )
        except Exception as exc:  # pragma: no cover - network call
            raise TranslationGatewayError(
                f"Translation service temporarily unavailable: {exc}"
            ) from exc
        return self._extract_translations(response)

    def _log_debug(self, label: str, payload: Any) -> None:
        if not self.debug:
            return
        try:
            if isinstance(payload, (dict, list)):
                message = json.dumps(payload, ensure_ascii=False, indent=2)
            else:
                message = str(payload)
        except (TypeError, ValueError):
            message = repr(payload)
        logger.debug("%s:\n%s", label, message)

    def _strip_code_fence(self, text: str) -> str:
        """Remove leading/trailing markdown code fences if present."""

        stripped = text.strip()
        if not stripped.startswith("```"):
            return stripped

        first_newline = stripped.find("\n")
        if first_newline == -1:
            return stripped
        body = stripped[first_newline + 1 :]
        closing_index = body.rfind("```")
        if closing_index != -1:
            body = body[:closing_index]
        return body.strip()

    def _extract_translations(self, response: Any) -> list[dict[str, Any]]:
        """Extract the structured translation list from a Responses API result."""

        output_text = getattr(response, "output_text", None)
        if hasattr(output_text, "value"):
            output_text = output_text.value
        if output_text:
            return self._normalise_translations(str(output_text))

        for item in getattr(response, "output", None) or []:
            for part in getattr(item, "content", None) or []:
                text_value = getattr(part, "text", None)
                if hasattr(text_value, "value"):
                    text_value = text_value.value
                if text_value:
                    return self._normalise_translations(str(text_value))

        raise TranslationGatewayError(
            "Translation gateway response empty or unrecognised."
        )

    def _normalise_translations(self, payload: Any) -> list[dict[str, Any]]:
        """Normalise raw payloads into a list of translation dictionaries."""

        if isinstance(payload, str):
            payload = self._strip_code_fence(payload)
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as exc:
                raise TranslationGatewayError(
                    f"Translation gateway returned invalid JSON: {exc}"
                ) from exc

        if isinstance(payload, dict):
            translations = payload.get("translations")
            if isinstance(translations, list):
                return translations

        if isinstance(payload, list):
            return payload

        raise TranslationGatewayError(
            "Translation gateway response malformed: could not find translations list."
        )


class LegacyOpenAIGateway(OpenAIGateway):
    """Translation gateway that uses the Chat Completions API for compatibility."""

    name = "legacy-openai"

    def _invoke_model(
        self,
        *,
        system_prompt: str,
        user_payload: dict,
        model: str,
    ) -> list[dict[str, Any]]:
        try:
            response = self._client.chat.completions.create(
                model=model,
                temperature=0,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {
                        "role": "user",
                        "content": json.dumps(user_payload, ensure_ascii=False),
                    },
                ],
            )
        except Exception as exc:  # pragma: no cover - network call
            raise TranslationGatewayError(
                f"Translation service temporarily unavailable: {exc}"
            ) from exc

        content: str | None = None
        for choice in getattr(response, "choices", None) or []:
            message = getattr(choice, "message", None)
            message_content = getattr(message, "content", None)
            if message_content:
                content = str(message_content)
                break

        if content is None:
            raise TranslationGatewayError(
                "Translation gateway response empty or unrecognised."
            )
        return self._normalise_translations(content)


class GoogleCloudGateway(TranslationGateway):
    """Translation gateway backed by Google Cloud Translation (v2)."""

    name = "google"
    default_max_items = 25
    default_max_request_size = 5000

    def __init__(
        self,
        *,
        settings: "DocbridgeSettings | None" = None,
        client: Any = None,
        max_items: int | None = None,
        max_request_size: int | None = None,
    ) -> None:
        super().__init__(max_items=max_items, max_request_size=max_request_size)
        self._client = client if client is not None else self._build_client(settings)

    def _build_client(self, settings: "DocbridgeSettings | None") -> Any:
        try:
            from google.cloud import translate_v2
        except ImportError as exc:  # pragma: no cover - import guard
            raise GatewayConfigurationError(
                "google-cloud-translate is required for the Google gateway. "
                "Install it with `pip install google-cloud-translate`."
            ) from exc

        credentials_path = settings.GOOGLE_APPLICATION_CREDENTIALS if settings else None
        try:
            if credentials_path:
                return translate_v2.Client.from_service_account_json(credentials_path)
            return translate_v2.Client()
        except Exception as exc:
            raise GatewayConfigurationError(
                f"Google Cloud Translation client could not be created: {exc}"
            ) from exc

    def _translate_texts(
        self,
        texts: List[str],
        *,
        target_language: str,
        source_language: str | None,
    ) -> List[str]:
        try:
            # A missing source language lets the service detect it.
            results = self._client.translate(
                texts,
                target_language=target_language,
                source_language=source_language,
                format_="text",
            )
        except Exception as exc:
            raise TranslationGatewayError(
                f"Google Cloud Translation request failed: {exc}"
            ) from exc

        if isinstance(results, dict):
            results = [results]
        try:
            return [item["translatedText"] for item in results]
        except (KeyError, TypeError) as exc:
            raise TranslationGatewayError(
                "Google Cloud Translation response malformed."
            ) from exc


GATEWAY_ALIASES = {
    "openai": "openai",
    "gpt": "openai",
    "default": "openai",
    "legacy-openai": "legacy-openai",
    "legacy_openai": "legacy-openai",
    "legacy": "legacy-openai",
    "openai-legacy": "legacy-openai",
    "google": "google",
    "google-cloud": "google",
    "gcloud": "google",
    "echo": "echo",
    "noop": "echo",
    "mock": "echo",
}


def build_gateway(
    name: str | None,
    *,
    settings: "DocbridgeSettings | None" = None,
    model: str | None = None,
    debug: bool = False,
    max_items: int | None = None,
    max_request_size: int | None = None,
) -> TranslationGateway:
    """Factory to create gateways by name."""

    normalized = GATEWAY_ALIASES.get((name or "openai").strip().lower())
    if settings is not None:
        if max_items is None:
            max_items = settings.DOCBRIDGE_MAX_ITEMS
        if max_request_size is None:
            max_request_size = settings.DOCBRIDGE_MAX_REQUEST_SIZE

    if normalized == "openai":
        return OpenAIGateway(
            settings=settings,
            model=model,
            debug=debug,
            max_items=max_items,
            max_request_size=max_request_size,
        )
    if normalized == "legacy-openai":
        return LegacyOpenAIGateway(
            settings=settings,
            model=model,
            debug=debug,
            max_items=max_items,
            max_request_size=max_request_size,
        )
    if normalized == "google":
        return GoogleCloudGateway(
            settings=settings,
            max_items=max_items,
            max_request_size=max_request_size,
        )
    if normalized == "echo":
        return EchoGateway(max_items=max_items, max_request_size=max_request_size)
    raise GatewayConfigurationError(f"Unknown translation gateway '{name}'.")
