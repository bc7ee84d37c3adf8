"""
AI device classifier.
Guesses a device's role and services from its open TCP ports.
"""

import json
import logging

from pydantic import ValidationError

from .llm import LLMProvider, get_provider
from .models import ClassificationResult

logger = logging.getLogger("lanprobe.classifier")

CATEGORIES = [
    "Server",
    "Router",
    "Workstation",
    "Printer",
    "NAS",
    "IoT Device",
    "Mobile Device",
    "Unknown",
]

CLASSIFICATION_SCHEMA = {
    "type": "object",
    "properties": {
        "category": {
            "type": "string",
            "enum": CATEGORIES,
            "description": "The most likely device type.",
        },
        "analysis": {
            "type": "string",
            "description": "Brief summary of the device role plus one security tip.",
        },
        "services": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "port": {"type": "integer", "description": "The port number."},
                    "serviceName": {"type": "string", "description": "Common name of the service."},
                    "description": {"type": "string", "description": "One sentence on the service."},
                },
                "required": ["port", "serviceName", "description"],
            },
        },
    },
    "required": ["category", "analysis", "services"],
}

CLASSIFY_SYSTEM_PROMPT = """You are a network engineer identifying devices on a home or office LAN.

You are given the IP address of a device and the TCP ports that accepted a connection.
Respond with a single valid JSON object and nothing else:
{
    "category": "one of the allowed categories",
    "services": [
        {"port": 22, "serviceName": "SSH", "description": "One sentence on what the service does."}
    ],
    "analysis": "Short, non-technical summary of the device's likely role plus one security tip about its open ports."
}
"""


class ClassificationError(Exception):
    """The model answer could not be turned into a classification."""


class DeviceClassifier:
    """
    LLM-backed classifier for discovered devices.

    The provider is created on first use, so missing credentials show up
    as a failed classification for each device rather than at startup.
    """

    def __init__(
        self,
        provider: str = "ollama",
        model: str | None = None,
        api_key: str | None = None,
        llm: LLMProvider | None = None,
    ):
        self.provider_name = provider
        self.model = model
        self.api_key = api_key

        self._provider: LLMProvider | None = llm
        self._classify_count = 0

    def initialize(self) -> None:
        """Create the LLM provider."""
        self._provider = get_provider(
            self.provider_name,
            model=self.model,
            api_key=self.api_key,
        )
        logger.info(f"Classifier initialized with {self.provider_name}/{self._provider.get_model_name()}")

    async def classify(self, ip: str, open_ports: list[int]) -> ClassificationResult:
        """
        Classify one device.

        Args:
            ip: Device address
            open_ports: Ports that accepted a connection

        Returns:
            ClassificationResult

        Raises:
            ClassificationError: The answer was not usable JSON
            LLMError: The provider call failed
            ValueError: The provider is not configured
        """
        if not open_ports:
            return ClassificationResult(
                category="Unknown",
                analysis="No open ports detected to analyze.",
            )

        if self._provider is None:
            self.initialize()

        self._classify_count += 1

        prompt = (
            f"A device on a local network at IP address {ip} has the following TCP ports open: "
            f"{', '.join(str(p) for p in open_ports)}.\n\n"
            f"Choose \"category\" from this list: {', '.join(CATEGORIES)}.\n"
            f"List one \"services\" entry per open port. Keep all text concise."
        )

        response = await self._provider.structured(
            prompt=prompt,
            schema=CLASSIFICATION_SCHEMA,
            system=CLASSIFY_SYSTEM_PROMPT,
            schema_name="device_classification",
            temperature=0.1,
            max_tokens=1500,
        )
        result = self.parse_response(response)
        logger.debug(f"{ip} classified as {result.category}")
        return result

    @staticmethod
    def parse_response(response: str) -> ClassificationResult:
        """Parse the model answer into a ClassificationResult."""
        text = (response or "").strip()

        # Handle potential markdown code blocks
        if "```json" in text:
            start = text.find("```json") + 7
            end = text.find("```", start)
            text = text[start:end].strip()
        elif "```" in text:
            start = text.find("```") + 3
            end = text.find("```", start)
            text = text[start:end].strip()

        start = text.find("{")
        end = text.rfind("}") + 1
        if start == -1 or end == 0:
            raise ClassificationError("No JSON object in model response")

        try:
            data = json.loads(text[start:end])
        except json.JSONDecodeError as e:
            logger.debug(f"Response was: {text[:500]}")
            raise ClassificationError(f"Malformed JSON in model response: {e}") from e

        if not isinstance(data, dict):
            raise ClassificationError("Model response is not a JSON object")

        # Empty values fall back to the model defaults
        cleaned = {k: v for k, v in data.items() if k in ("category", "analysis", "services") and v}
        try:
            return ClassificationResult.model_validate(cleaned)
        except ValidationError as e:
            raise ClassificationError(f"Unexpected classification shape: {e}") from e

    @property
    def stats(self) -> dict:
        """Get classifier statistics."""
        return {
            "classifications": self._classify_count,
            "provider": self.provider_name,
            "model": self._provider.get_model_name() if self._provider else self.model,
        }
