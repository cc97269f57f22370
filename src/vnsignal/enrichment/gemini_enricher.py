"""
Gemini narrative enricher.

Asks Google's Gemini model for a structured short/long-term read on one
Vietnamese listing, given the engine's technical and fundamental context.

Key design decisions:
  - Temperature is set to 0 for reproducible answers.
  - Output is parsed straight into ``NarrativeAssessment`` through a
    ``PydanticOutputParser``; an unparseable answer is an enrichment
    failure, not a partial result.
  - The request deadline and retries are the client's own
    (``timeout_seconds``, ``max_retries``); calls run on the calling
    pipeline worker, so concurrency is bounded by the pipeline alone.
  - Grounded Google Search is optional (``use_search``); it improves
    target prices but costs latency and quota.
"""
from datetime import date
from typing import Optional

from google.genai.types import GoogleSearch, Tool
from langchain_core.output_parsers import PydanticOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_google_genai import ChatGoogleGenerativeAI
from loguru import logger

from src.vnsignal.config import EnrichmentConfig
from src.vnsignal.enrichment.base import (
    FundamentalContext,
    NarrativeAssessment,
    NarrativeEnricher,
    TechnicalContext,
)
from src.vnsignal.errors import EnrichmentError, EnrichmentTimeoutError


class GeminiNarrativeEnricher(NarrativeEnricher):
    """Produces narrative assessments by querying Gemini."""

    def __init__(self, api_key: str, config: Optional[EnrichmentConfig] = None):
        """
        Args:
            api_key: Google AI API key.
            config: Model name, timeout, retry and throttle settings.

        Raises:
            ValueError: If *api_key* is empty or ``None``.
        """
        if not api_key:
            raise ValueError("Gemini API key is required for narrative enrichment.")

        self.config = config or EnrichmentConfig()
        super().__init__(min_interval_seconds=self.config.min_interval_seconds)

        self.llm = ChatGoogleGenerativeAI(
            model=self.config.model_name,
            google_api_key=api_key,
            temperature=0.0,
            timeout=self.config.timeout_seconds,
            max_retries=self.config.max_retries,
        )
        self.parser = PydanticOutputParser(pydantic_object=NarrativeAssessment)
        self._search_tool = Tool(google_search=GoogleSearch()) if self.config.use_search else None

    # ------------------------------------------------------------------
    # Prompt construction
    # ------------------------------------------------------------------

    @staticmethod
    def _construct_prompt() -> ChatPromptTemplate:
        system_template = """
You are a sell-side equity analyst covering the Vietnamese stock market
(HOSE, HNX, UPCoM). Prices are quoted in VND.

Given the engine's technical and fundamental readings for one ticker,
produce a short-term (1-4 weeks) and a long-term (6-12 months) call.

### RULES
- Calls are BUY, SELL or WATCH only.
- Only give a `target_price` you can justify from the levels provided
  (pivots, Bollinger bands, valuation). Otherwise leave it null.
- `stop_loss` must sit below the current price for a BUY call.
- Do NOT invent ratios that are not listed.

{format_instructions}
"""

        human_template = """
[Ticker] {symbol}   [Date] {current_date}

[Technical context]
{technical}

[Fundamental context]
{fundamental}
"""

        return ChatPromptTemplate.from_messages([
            ("system", system_template),
            ("human", human_template),
        ])

    # ------------------------------------------------------------------
    # Upstream call
    # ------------------------------------------------------------------

    def _request_assessment(
        self,
        symbol: str,
        technical: TechnicalContext,
        fundamental: FundamentalContext,
    ) -> Optional[NarrativeAssessment]:
        logger.debug(f"{symbol}: requesting Gemini assessment ({self.config.model_name})")

        model = self.llm.bind_tools([self._search_tool]) if self._search_tool else self.llm
        chain = self._construct_prompt() | model | self.parser

        payload = {
            "symbol": symbol,
            "current_date": date.today().isoformat(),
            "technical": technical.render(),
            "fundamental": fundamental.render(),
            "format_instructions": self.parser.get_format_instructions(),
        }

        try:
            return chain.invoke(payload)
        except Exception as e:
            if _is_timeout(e):
                raise EnrichmentTimeoutError(
                    f"no answer within {self.config.timeout_seconds:.0f}s"
                ) from e
            raise EnrichmentError(f"Gemini call failed: {e}") from e


def _is_timeout(exc: Exception) -> bool:
    """True for the timeout flavours raised by the HTTP and gRPC transports."""
    if isinstance(exc, TimeoutError):
        return True
    name = type(exc).__name__.lower()
    return "timeout" in name or "deadline" in name
