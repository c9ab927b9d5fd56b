# File: services/text_generation.py

import json
import logging
import re
from dataclasses import asdict
from typing import Any, Dict

from openai import AsyncOpenAI, OpenAIError

from exceptions import ExternalServiceError
from schemas import FactSheet, GeneratedContent, MatchFoundFacts

logger = logging.getLogger(__name__)

class TextGenerator:
    """Turns a fact sheet into notification copy."""

    async def generate(self, facts: FactSheet) -> GeneratedContent:
        raise NotImplementedError

class TemplateTextGenerator(TextGenerator):
    """Deterministic copy, used when no LLM is configured."""

    def __init__(self, app_name: str = "SeatShare"):
        self.app_name = app_name

    async def generate(self, facts: FactSheet) -> GeneratedContent:
        request = facts.request
        requested = request.requested_date.strftime("%d/%m/%Y")
        if not isinstance(facts, MatchFoundFacts):
            return GeneratedContent(
                found=False,
                message=f"No trips found for your route {request.origin} - {request.destination} on {requested}.",
            )

        trip = facts.trip
        body = (
            "Hello,\n\n"
            f"We found a trip matching your saved route from {request.origin} to {request.destination}.\n\n"
            "Trip details:\n"
            f"- Origin: {trip.origin}\n"
            f"- Destination: {trip.destination}\n"
            f"- Departure: {trip.departure_formatted}\n"
            f"- Driver: {trip.driver_name}\n"
            f"- Seats available: {trip.seats_available}\n\n"
            f"You can see more details and request your seat on {self.app_name}.\n\n"
            f"Regards,\nThe {self.app_name} team"
        )
        return GeneratedContent(
            found=True,
            message=f"Match found for your route {request.origin} - {request.destination} on {requested}!",
            subject=f"Trip found! {request.origin} to {request.destination} ({requested})",
            body=body,
        )

def _strip_code_fence(raw_text: str) -> str:
    text = raw_text.strip()
    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?", "", text)
        text = re.sub(r"```$", "", text.strip())
    return text.strip()

class LLMTextGenerator(TextGenerator):
    """Copy written by a model behind an OpenAI-compatible endpoint."""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        temperature: float = 0.2,
        app_name: str = "SeatShare",
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.app_name = app_name

    def build_prompt(self, facts: FactSheet) -> str:
        payload = {"kind": facts.kind, **asdict(facts)}
        return (
            f"You watch saved routes for {self.app_name} passengers.\n"
            "Using ONLY the facts below, write the notification for this passenger.\n"
            "Answer with a single JSON object and nothing else, with these keys:\n"
            "- 'found': true when the facts kind is 'match_found', otherwise false\n"
            "- 'message': one sentence summarising the result\n"
            "- 'subject': short, professional, at most 70 characters, no emojis; "
            "format 'Trip found! <origin> to <destination> (DD/MM/YYYY)' using the requested date\n"
            "- 'body': a friendly plain-text email with a greeting, the trip origin, destination, "
            f"departure, driver and seats available, an invitation to request a seat on {self.app_name}, "
            f"and the sign-off 'The {self.app_name} team'. No emojis.\n"
            "When found is false, subject and body may be empty strings.\n\n"
            f"Facts:\n{json.dumps(payload, default=str, ensure_ascii=False, indent=2)}"
        )

    async def generate(self, facts: FactSheet) -> GeneratedContent:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": "You write concise transactional emails and reply only with JSON."},
                    {"role": "user", "content": self.build_prompt(facts)},
                ],
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
        except OpenAIError as e:
            logger.error(f"🔥 LLM backend error: {e}")
            raise ExternalServiceError("Text generation is temporarily unavailable.") from e

        if not response.choices or not response.choices[0].message.content:
            logger.error("❌ No content returned from LLM")
            raise ExternalServiceError("Text generation returned no content.")
        return self.parse(response.choices[0].message.content)

    def parse(self, raw_text: str) -> GeneratedContent:
        try:
            data: Dict[str, Any] = json.loads(_strip_code_fence(raw_text))
        except json.JSONDecodeError as e:
            logger.error(f"❌ LLM returned invalid JSON: {raw_text[:200]!r}")
            raise ExternalServiceError("Text generation returned malformed output.") from e
        if not isinstance(data, dict) or not isinstance(data.get("found"), bool):
            raise ExternalServiceError("Text generation output is missing 'found'.")

        return GeneratedContent(
            found=data["found"],
            message=str(data.get("message") or ""),
            subject=data.get("subject") if isinstance(data.get("subject"), str) else None,
            body=data.get("body") if isinstance(data.get("body"), str) else None,
        )
