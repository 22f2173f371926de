"""Produce a candidate alt text for one image asset."""

from __future__ import annotations

from typing import Callable, Optional, Sequence

from alttext import logging_manager as log_mgr
from alttext.errors import (
    ApiError,
    DryRun,
    DuplicateAlt,
    MissingCredential,
    NotAnImage,
    RateLimitExceeded,
)
from alttext.images import ImagePayloadResolver, is_image_access_error
from alttext.llm_client import LLMClient, build_chat_payload, create_client
from alttext.models import (
    DuplicatePolicy,
    GenerationConfig,
    GenerationResult,
    ImageAsset,
    ImageStrategy,
    StrategyKind,
    normalize_alt_text,
)
from alttext.prompt_templates import SYSTEM_PROMPT, build_prompt, clean_alt_text
from alttext.usage import UsageTracker

logger = log_mgr.get_logger().getChild("generation")

ClientFactory = Callable[[GenerationConfig], LLMClient]

# One extra pass over the strategy list when every strategy repeated the existing text.
DUPLICATE_PASSES = 2


def is_duplicate(candidate: str, existing: str) -> bool:
    """Return True when ``candidate`` is empty or repeats ``existing``."""

    candidate = normalize_alt_text(candidate)
    if not candidate:
        return True
    return candidate.casefold() == normalize_alt_text(existing).casefold()


class GenerationOrchestrator:
    """Walk the image strategies until the API returns a fresh description."""

    def __init__(
        self,
        client_factory: Optional[ClientFactory] = None,
        resolver: Optional[ImagePayloadResolver] = None,
        usage: Optional[UsageTracker] = None,
        *,
        max_rate_limit_retries: int = 3,
    ) -> None:
        self._max_rate_limit_retries = max_rate_limit_retries
        self._client_factory = client_factory or self._default_client
        self._resolver = resolver or ImagePayloadResolver()
        self._usage = usage

    def _default_client(self, config: GenerationConfig) -> LLMClient:
        return create_client(config, max_retries=self._max_rate_limit_retries)

    def open_client(self, config: GenerationConfig) -> LLMClient:
        return self._client_factory(config)

    @property
    def resolver(self) -> ImagePayloadResolver:
        return self._resolver

    def generate(
        self,
        asset: ImageAsset,
        config: GenerationConfig,
        source: str = "manual",
        retry_count: int = 0,
        feedback: Sequence[str] = (),
        *,
        client: Optional[LLMClient] = None,
    ) -> GenerationResult:
        """Return a new alt text for ``asset``.

        Raises :class:`MissingCredential`, :class:`NotAnImage`,
        :class:`DryRun` (carrying the prompt), :class:`DuplicateAlt` or any
        API error that is not an image-access failure.
        """

        if not config.has_credential:
            raise MissingCredential()
        if not asset.is_image:
            raise NotAnImage(asset.asset_id, asset.mime_type)

        existing = normalize_alt_text(asset.alt_text)
        prompt = build_prompt(
            asset,
            config,
            existing_alt=existing or None,
            is_retry=retry_count > 0,
            feedback=feedback,
        )
        if config.dry_run:
            logger.info(
                "Dry run for asset %s; request not sent",
                asset.asset_id,
                extra={"event": "generation.dry_run", "asset_id": asset.asset_id},
            )
            raise DryRun(prompt, asset_id=asset.asset_id)

        with log_mgr.log_context(asset_id=asset.asset_id, stage="generate"):
            if client is not None:
                return self._run(client, asset, config, prompt, existing, source)
            with self.open_client(config) as owned:
                return self._run(owned, asset, config, prompt, existing, source)

    def _request(
        self,
        client: LLMClient,
        config: GenerationConfig,
        prompt: str,
        strategy: ImageStrategy,
    ):
        payload = build_chat_payload(
            model=config.model,
            system_prompt=SYSTEM_PROMPT,
            user_text=prompt,
            image_part=strategy.content_part(),
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )
        response = client.send_chat_request(payload, timeout=config.request_timeout)
        if self._usage is not None:
            self._usage.record(response.token_usage)
        return response

    def _run(
        self,
        client: LLMClient,
        asset: ImageAsset,
        config: GenerationConfig,
        prompt: str,
        existing: str,
        source: str,
    ) -> GenerationResult:
        requests_per_strategy = 2 if config.duplicate_policy is DuplicatePolicy.RETRY else 1
        duplicates = 0
        last_duplicate = ""

        for pass_index in range(DUPLICATE_PASSES):
            for strategy in self._resolver.iter_strategies(asset, config):
                if not strategy.usable:
                    logger.debug(
                        "Skipping %s strategy: %s",
                        strategy.kind.value,
                        strategy.error,
                        extra={"event": "generation.strategy_skipped", "strategy": strategy.kind.value},
                    )
                    continue

                for _ in range(requests_per_strategy):
                    try:
                        response = self._request(client, config, prompt, strategy)
                    except RateLimitExceeded:
                        raise
                    except ApiError as exc:
                        if strategy.kind is StrategyKind.OMITTED or not is_image_access_error(exc.message):
                            raise
                        logger.info(
                            "Provider could not use %s image payload: %s",
                            strategy.kind.value,
                            exc.message,
                            extra={"event": "generation.image_access_failed", "strategy": strategy.kind.value},
                        )
                        break

                    text = clean_alt_text(response.text)
                    if not is_duplicate(text, existing):
                        logger.info(
                            "Generated alt text for asset %s via %s",
                            asset.asset_id,
                            strategy.kind.value,
                            extra={
                                "event": "generation.success",
                                "strategy": strategy.kind.value,
                                "source": source,
                            },
                        )
                        return GenerationResult(
                            alt_text=text,
                            usage=response.token_usage,
                            strategy=strategy,
                            model=config.model,
                            prompt=prompt,
                        )

                    duplicates += 1
                    last_duplicate = text
                    logger.info(
                        "Duplicate alt text from %s strategy (pass %s)",
                        strategy.kind.value,
                        pass_index + 1,
                        extra={"event": "generation.duplicate", "strategy": strategy.kind.value},
                    )

        raise DuplicateAlt(last_duplicate, attempts=duplicates)


__all__ = ["ClientFactory", "DUPLICATE_PASSES", "GenerationOrchestrator", "is_duplicate"]
