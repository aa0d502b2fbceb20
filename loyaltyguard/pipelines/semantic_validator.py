"""
Semantic receipt validation through an LLM oracle.

One request parses the receipt AND assesses it:
    {"parsed": {...receipt fields...}, "assessment": {...SemanticAssessment...}}

The oracle is treated as untrusted. Its answer is validated with pydantic;
a failed call, a timeout, unparseable JSON or a shape mismatch all yield
the fail-safe assessment (fraud_likelihood 0.5, every check false,
suspicious_patterns ["validation unavailable"]). Nothing here raises.

Providers:
- openai: chat completions with JSON response format
- ollama: local /api/chat over HTTP (requests)
- none:   no call, fail-safe assessment
"""

import json
import logging
import re
from typing import Any, Dict, Optional, Sequence, Tuple

import requests
from pydantic import ValidationError

from loyaltyguard.config.llm_config import LLMConfig, get_llm_client
from loyaltyguard.errors import OracleResponseError
from loyaltyguard.schemas.semantic import (
    ParsedReceipt,
    SemanticAssessment,
    build_empty_parsed,
    build_failsafe_assessment,
)

logger = logging.getLogger(__name__)

# Country -> tax regime hint passed to the oracle
TAX_REGIMES = {
    "SG": "SG GST = 9%",
    "TH": "TH VAT = 7%",
    "MY": "MY SST = 6-8%",
    "US": "US sales tax varies by state",
}

MAX_OCR_CHARS = 6000

SYSTEM_PROMPT = (
    "You are a receipt parser and fraud detection system combined. "
    "Extract structured receipt data AND assess fraud risk in a single pass. "
    "Return ONLY valid JSON. No markdown, no explanations outside the JSON."
)


def build_prompt(ocr_text: str, country_hint: str, merchant_candidates: Sequence[str] = ()) -> str:
    """User prompt carrying OCR text, tax regime hint and known merchants."""
    country = (country_hint or "").upper() or "unknown"
    regime = TAX_REGIMES.get(country, f"standard tax rules for {country}")
    merchants = ", ".join(m for m in merchant_candidates if m) or "none"
    text = (ocr_text or "")[:MAX_OCR_CHARS]

    return f"""Analyze this receipt text and return a single JSON object with two sections: "parsed" and "assessment".

COUNTRY: {country}
TAX REGIME: {regime}
KNOWN MERCHANTS (if any): {merchants}

--- RECEIPT TEXT ---
{text}
--- END ---

Return this exact JSON structure:

{{
  "parsed": {{
    "receipt_id": "string or null",
    "store_name": "string or null",
    "purchase_date": "YYYY-MM-DD or null",
    "total_amount": "number as string, e.g. 15.50",
    "currency": "e.g. SGD, THB, USD",
    "items": [{{"name": "string", "price": number, "quantity": number}}]
  }},
  "assessment": {{
    "merchant": {{"name": "string or null", "confidence": 0.0, "matched_template": "string or null"}},
    "extracted": {{
      "currency": "string or null", "date": "YYYY-MM-DD or null", "time": "HH:MM or null",
      "subtotal": number or null, "tax": number or null, "total": number or null,
      "receipt_id": "string or null"
    }},
    "checks": {{
      "math_consistent": true,
      "tax_plausible": true,
      "formatting_plausible": true,
      "merchant_plausible": true,
      "suspicious_patterns": []
    }},
    "fraud_likelihood": 0.0,
    "explanation": "string"
  }}
}}

Rules for "parsed":
- price and quantity inside items must be numbers; quantity defaults to 1
- total_amount is a string containing only the number

Rules for "assessment":
- math_consistent: subtotal + tax equals total within 0.02
- tax_plausible: compare against the tax regime above
- fraud_likelihood: 0.0 = clean, 1.0 = definitely fraud
- suspicious_patterns: list any red flags found"""


def extract_json(response: str) -> Dict[str, Any]:
    """
    Pull the JSON object out of a model response.

    Handles fenced ```json blocks and bare objects with trailing text.

    Raises:
        OracleResponseError: when no JSON object can be decoded
    """
    if not response or not response.strip():
        raise OracleResponseError("empty response")

    fenced = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", response, re.DOTALL)
    if fenced:
        candidate = fenced.group(1)
    else:
        stripped = response.strip()
        start = stripped.find("{")
        if start < 0:
            raise OracleResponseError("no JSON object found")
        depth = 0
        end = -1
        for i, char in enumerate(stripped[start:], start):
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end = i + 1
                    break
        if end < 0:
            raise OracleResponseError("unbalanced braces")
        candidate = stripped[start:end]

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise OracleResponseError(f"invalid JSON: {e.msg}") from e
    if not isinstance(data, dict):
        raise OracleResponseError("top-level JSON is not an object")
    return data


def parse_oracle_payload(data: Dict[str, Any]) -> Tuple[ParsedReceipt, SemanticAssessment]:
    """
    Validate both sections of an oracle answer.

    A missing or malformed section is replaced by its empty/fail-safe shape
    independently of the other one.
    """
    raw_parsed = data.get("parsed")
    raw_assessment = data.get("assessment")
    if raw_assessment is None and "checks" in data:
        raw_assessment = data

    parsed = build_empty_parsed()
    if isinstance(raw_parsed, dict):
        try:
            parsed = ParsedReceipt.model_validate(raw_parsed)
        except ValidationError as e:
            logger.warning(f"Oracle parsed section rejected: {e.error_count()} validation error(s)")

    if not isinstance(raw_assessment, dict):
        logger.warning("Oracle answer has no assessment section - using fail-safe")
        return parsed, build_failsafe_assessment("assessment missing from oracle answer")

    try:
        assessment = SemanticAssessment.model_validate({**raw_assessment, "degraded": False})
    except ValidationError as e:
        logger.warning(f"Oracle assessment rejected: {e.error_count()} validation error(s)")
        return parsed, build_failsafe_assessment("assessment failed validation")

    return parsed, assessment


class SemanticValidator:
    """
    Adapter around the configured LLM provider.

    Usage:
        validator = SemanticValidator(LLMConfig.from_env())
        parsed, assessment = validator.parse_and_validate(ocr_text, "SG", ["naturel"])
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        client: Any = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or LLMConfig.from_env()
        self.client = client if client is not None else get_llm_client(self.config)
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        if self.config.provider == "openai":
            return self.client is not None
        return self.config.provider == "ollama"

    def _call_openai(self, prompt: str) -> str:
        response = self.client.chat.completions.create(
            model=self.config.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            response_format={"type": "json_object"},
        )
        return response.choices[0].message.content or ""

    def _call_ollama(self, prompt: str) -> str:
        url = f"{self.config.ollama_base_url.rstrip('/')}/api/chat"
        payload = {
            "model": self.config.ollama_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "stream": False,
            "format": "json",
            "options": {
                "temperature": self.config.temperature,
                "num_predict": self.config.max_tokens,
            },
        }
        response = self.session.post(url, json=payload, timeout=self.config.timeout)
        response.raise_for_status()
        return response.json().get("message", {}).get("content", "")

    def parse_and_validate(
        self,
        ocr_text: str,
        country_hint: str,
        merchant_candidates: Sequence[str] = (),
    ) -> Tuple[ParsedReceipt, SemanticAssessment]:
        """Parsed receipt fields plus assessment; fail-safe on any failure."""
        if not self.enabled:
            logger.info(f"Semantic validation disabled (provider={self.config.provider})")
            return build_empty_parsed(), build_failsafe_assessment("semantic validation disabled")

        if not ocr_text or not ocr_text.strip():
            return build_empty_parsed(), build_failsafe_assessment("no OCR text to validate")

        prompt = build_prompt(ocr_text, country_hint, merchant_candidates)
        try:
            if self.config.provider == "ollama":
                raw = self._call_ollama(prompt)
            else:
                raw = self._call_openai(prompt)
            data = extract_json(raw)
        except requests.exceptions.Timeout:
            logger.warning(f"Semantic oracle timed out after {self.config.timeout}s")
            return build_empty_parsed(), build_failsafe_assessment("oracle timeout")
        except OracleResponseError as e:
            logger.warning(f"Semantic oracle returned unusable output: {e}")
            return build_empty_parsed(), build_failsafe_assessment("oracle response unusable")
        except Exception as e:
            logger.warning(f"Semantic oracle call failed: {e}")
            return build_empty_parsed(), build_failsafe_assessment("oracle call failed")

        parsed, assessment = parse_oracle_payload(data)
        logger.info(
            f"Semantic assessment: likelihood={assessment.fraud_likelihood:.2f} "
            f"patterns={len(assessment.checks.suspicious_patterns)} degraded={assessment.degraded}"
        )
        return parsed, assessment

    def run_semantic_validation(
        self,
        ocr_text: str,
        country_hint: str,
        merchant_candidates: Sequence[str] = (),
    ) -> SemanticAssessment:
        """Assessment only (the parsed section is discarded)."""
        _, assessment = self.parse_and_validate(ocr_text, country_hint, merchant_candidates)
        return assessment
