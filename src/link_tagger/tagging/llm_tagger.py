"""LLM-based tag suggestion using AWS Bedrock Claude."""

import asyncio
import json
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import QuotaExceededError, SuggestionError
from ..fetching.cache import UrlCache
from ..policy.plans import Plan, tags_per_request
from ..storage.models import PageMetadata
from .base import TagSuggester, TagSuggestions

logger = logging.getLogger(__name__)

# Bedrock error codes that mean the account has run out of capacity.
# Throttling is rate limiting and surfaces as a retryable SuggestionError.
QUOTA_ERROR_CODES = {"ServiceQuotaExceededException"}

# Suggestions for the same page are reused for a week
SUGGESTION_CACHE_TTL_SECONDS = 7 * 24 * 60 * 60
SUGGESTION_CACHE_MAX_ENTRIES = 500


class LLMTagger(TagSuggester):
    """Suggest free-form tags for links using Claude via AWS Bedrock."""

    def __init__(
        self,
        model_id: str = "us.anthropic.claude-3-5-sonnet-20241022-v2:0",
        region: str = "us-east-1",
        max_tokens: int = 300,
        max_tags: int = 5,
        input_cost_per_1k_tokens: float = 0.003,
        output_cost_per_1k_tokens: float = 0.015,
        cache: UrlCache | None = None,
    ):
        self.model_id = model_id
        self.region = region
        self.max_tokens = max_tokens
        self.max_tags = max_tags
        self.input_cost_per_1k_tokens = input_cost_per_1k_tokens
        self.output_cost_per_1k_tokens = output_cost_per_1k_tokens
        self._client: Any = None
        self._cache = cache if cache is not None else UrlCache(
            ttl_seconds=SUGGESTION_CACHE_TTL_SECONDS,
            max_entries=SUGGESTION_CACHE_MAX_ENTRIES,
        )

    @property
    def client(self) -> Any:
        """Lazy initialization of Bedrock client."""
        if self._client is None:
            self._client = boto3.client(
                "bedrock-runtime",
                region_name=self.region,
            )
        return self._client

    @property
    def model_name(self) -> str:
        return self.model_id

    async def suggest(
        self,
        metadata: PageMetadata,
        scope: str | None = None,
        plan: Plan | None = None,
    ) -> TagSuggestions:
        """Generate tag suggestions for a page.

        The plan decides how many tags one request may return.
        """
        max_tags = tags_per_request(plan, self.max_tags)
        cached = self._cache.get(metadata.url, scope)
        if cached is not None:
            return TagSuggestions(tags=cached[:max_tags], from_cache=True)

        prompt = self._build_prompt(metadata, max_tags)

        # Bedrock uses sync API, wrap in executor for async compatibility
        loop = asyncio.get_running_loop()
        text, usage = await loop.run_in_executor(None, self._invoke_model, prompt)

        tags = self._parse_response(text)[:max_tags]
        input_tokens = int(usage.get("input_tokens", 0))
        output_tokens = int(usage.get("output_tokens", 0))
        cost = (
            input_tokens * self.input_cost_per_1k_tokens
            + output_tokens * self.output_cost_per_1k_tokens
        ) / 1000

        self._cache.put(metadata.url, scope, tags)
        return TagSuggestions(
            tags=list(tags),
            from_cache=False,
            tokens_used=input_tokens + output_tokens,
            cost=round(cost, 6),
        )

    def _build_prompt(self, metadata: PageMetadata, max_tags: int) -> str:
        """Build the tagging prompt for a page."""
        return f"""Suggest topical tags for this saved web link.

LINK INFORMATION:
- Title: {metadata.title or "Unknown"}
- URL: {metadata.url}
- Site: {metadata.site_name or metadata.domain or "Unknown"}
- Description: {metadata.description or "None"}

INSTRUCTIONS:
1. Suggest 1-{max_tags} short tags (one to three words each)
2. Prefer general topics a reader would browse by
3. Return ONLY valid JSON, no other text

Return your response as JSON in this exact format:
{{"tags": ["tag one", "tag two"]}}

JSON response:"""

    def _invoke_model(self, prompt: str) -> tuple[str, dict]:
        """Invoke the Bedrock model synchronously."""
        body = json.dumps(
            {
                "anthropic_version": "bedrock-2023-05-31",
                "max_tokens": self.max_tokens,
                "messages": [{"role": "user", "content": prompt}],
            }
        )

        try:
            response = self.client.invoke_model(
                modelId=self.model_id,
                body=body,
                contentType="application/json",
                accept="application/json",
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in QUOTA_ERROR_CODES:
                raise QuotaExceededError(f"Bedrock quota exhausted: {code}") from e
            raise SuggestionError(f"Bedrock request failed: {code or e}") from e
        except BotoCoreError as e:
            raise SuggestionError(f"Bedrock request failed: {e}") from e

        response_body = json.loads(response["body"].read())
        return response_body["content"][0]["text"].strip(), response_body.get("usage", {})

    def _parse_response(self, response: str) -> list[str]:
        """Parse the LLM response into tag names."""
        # Handle potential markdown code blocks
        if response.startswith("```"):
            lines = response.split("\n")
            response = "\n".join(lines[1:-1])

        try:
            data = json.loads(response)
        except json.JSONDecodeError as e:
            logger.debug(f"Response was: {response}")
            raise SuggestionError(f"Failed to parse LLM response: {e}") from e

        raw_tags = data.get("tags", []) if isinstance(data, dict) else []
        tags = []
        for item in raw_tags:
            # Tolerate the object form {"name": ...} some models return
            name = item.get("name", "") if isinstance(item, dict) else item
            if isinstance(name, str) and name.strip():
                tags.append(name.strip())
            else:
                logger.warning(f"Ignoring malformed tag entry: {item!r}")

        return tags
