"""AI item analysis: vehicle, weight, difficulty and a fair driver price.

Talks to Gemini through its OpenAI-compatible endpoint with the OpenAI SDK and
structured output. The request flow must never block on AI availability, so
`analyze_item` always returns a suggestion: a fixed one when no API key is
configured and another fixed one when the call fails for any reason.
"""
from functools import lru_cache
from typing import Optional

import structlog
from openai import AsyncOpenAI

from errors import Unavailable
from schemas import AIAnalysisResult, VehicleType
from settings import get_settings

logger = structlog.get_logger(__name__)

MODEL_CONFIG = {
    "item_analysis": {
        "temperature": 0.2,
        "max_tokens": 1024,
    },
}

MISSING_KEY_FALLBACK = AIAnalysisResult(
    vehicle_type=VehicleType.PICKUP,
    estimated_weight_lb=150,
    difficulty_score=5,
    reasoning="API Key missing. Defaulting to Pickup Truck.",
    suggested_price=45,
)

FAILURE_FALLBACK = AIAnalysisResult(
    vehicle_type=VehicleType.PICKUP,
    estimated_weight_lb=0,
    difficulty_score=5,
    reasoning="AI Analysis unavailable. Please estimate manually.",
    suggested_price=50,
)

SYSTEM_PROMPT = """You are a logistics expert for a peer-to-peer delivery app.
A user needs a free item picked up. Analyze the item (and image if provided) to determine the best vehicle, weight, difficulty, and a fair price for a driver.

Please specifically consider:
1. FRAGILITY: Is the item delicate (e.g., glass, antique, electronics) or robust?
2. PACKING REQUIREMENTS: Does it need moving blankets, tie-downs, bubble wrap, or careful stacking?
3. HANDLING: Does it require two people to lift?

Factor these handling needs into the 'difficultyScore' (1 is easy, like a lamp; 10 is hard, like a piano) and the 'suggestedPrice' (in USD).

In the 'reasoning' field, explain your vehicle choice AND explicitly list any necessary packing materials or handling cautions (e.g. "Requires 2 people," "Needs blankets for glass").

vehicleType must be one of: """ + ", ".join(f"'{v.value}'" for v in VehicleType)


@lru_cache
def get_client() -> Optional[AsyncOpenAI]:
    settings = get_settings()
    if not settings.gemini_api_key:
        return None
    return AsyncOpenAI(base_url=settings.gemini_base_url, api_key=settings.gemini_api_key)


def strip_data_url(image: str) -> str:
    """Drop a `data:image/...;base64,` prefix if present."""
    return image.split(",", 1)[1] if "," in image else image


def build_user_content(image_b64: Optional[str], description: str, distance_miles: float) -> list:
    content = []
    if image_b64:
        content.append(
            {
                "type": "image_url",
                "image_url": {"url": f"data:image/jpeg;base64,{strip_data_url(image_b64)}"},
            }
        )
    content.append(
        {
            "type": "text",
            "text": f"Description: {description}.\nDistance: {distance_miles} miles.",
        }
    )
    return content


async def call_llm_for_item_analysis(
    client: AsyncOpenAI, image_b64: Optional[str], description: str, distance_miles: float
) -> AIAnalysisResult:
    """One structured-output call; raises Unavailable on any failure."""
    try:
        response = await client.chat.completions.parse(
            model=get_settings().gemini_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_content(image_b64, description, distance_miles)},
            ],
            response_format=AIAnalysisResult,
            **MODEL_CONFIG["item_analysis"],
        )
    except Exception as exc:
        raise Unavailable(f"AI analysis request failed: {exc}") from exc

    parsed = response.choices[0].message.parsed
    if parsed is None:
        raise Unavailable("No response from AI")
    return parsed


async def analyze_item(
    image_b64: Optional[str], description: str, distance_miles: float
) -> AIAnalysisResult:
    client = get_client()
    if client is None:
        logger.warning("No API key provided. Returning fallback analysis.")
        return MISSING_KEY_FALLBACK.model_copy()

    try:
        result = await call_llm_for_item_analysis(client, image_b64, description, distance_miles)
    except Unavailable as exc:
        logger.error("AI analysis failed, returning fallback", error=exc.message)
        return FAILURE_FALLBACK.model_copy()

    logger.info(
        "AI analysis complete",
        vehicle_type=result.vehicle_type.value,
        suggested_price=result.suggested_price,
    )
    return result
