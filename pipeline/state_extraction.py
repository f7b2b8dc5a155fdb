"""
Conversation state extraction component for the discovery pipeline.
"""
import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from config import FEATURES
from models.state import (
    FLAG_FIELDS,
    LIST_FIELDS,
    STATE_FIELDS,
    ConversationFilterState,
    DiscoveryState,
    ExtractedSignals,
    Signal,
)
from pipeline.entity_resolution import extract_name_hint
from utils.llm import get_llm, llm_configured, parse_json_object, safe_llm_call
from utils.prompts import SIGNAL_EXTRACTION_PROMPT

logger = logging.getLogger(__name__)

# Named carriers and their canonical spelling
CARRIER_MAP = {
    "cigna": "Cigna",
    "aetna": "Aetna",
    "anthem": "Anthem",
    "blue cross": "Blue Cross Blue Shield",
    "blue shield": "Blue Cross Blue Shield",
    "bcbs": "Blue Cross Blue Shield",
    "bluechoice": "BCBS BlueChoice",
    "carefirst": "CareFirst",
    "united healthcare": "United Healthcare",
    "unitedhealthcare": "United Healthcare",
    "uhc": "United Healthcare",
    "kaiser": "Kaiser Permanente",
    "humana": "Humana",
}

# Service phrases recognized without the language model
SERVICE_VOCABULARY = {
    "mammogram": r"\bmammogra(?:m|ms|phy)\b",
    "dental": r"\b(?:dental|dentists?|teeth|tooth)\b",
    "mental health": r"\b(?:mental\s+health|therapy|therapist|counseling|psychiatrist)\b",
    "sti": r"\b(?:sti|std)s?\b|\bsexual\s+health\b",
    "primary care": r"\b(?:primary\s+care|family\s+medicine|check[\s-]?up)\b",
    "urgent care": r"\b(?:urgent\s+care|walk[\s-]?in)\b",
    "vision": r"\b(?:vision|eye\s+exams?|optometrists?)\b",
    "pharmacy": r"\b(?:pharmacy|prescriptions?)\b",
}

# Retraction target -> fields it clears
RETRACTION_TARGETS = {
    "insurance": ("accepts_medicaid", "accepts_medicare", "accepts_uninsured", "insurance_providers"),
    "location": ("location_text",),
    "service": ("service_terms",),
    "services": ("service_terms",),
    "free": ("free_only",),
    "telehealth": ("telehealth_available",),
}

FLAG_PATTERNS = [
    (r"\b(?:does|do)\s*n[o']?t\s+(?:need|have)\s+to\s+be\s+free\b", "free_only", False),
    (r"\b(?:free|no[\s-]*cost)\b", "free_only", True),
    (r"\bmedicaid\b", "accepts_medicaid", True),
    (r"\bmedicare\b", "accepts_medicare", True),
    (r"\b(?:uninsured|no\s+insurance|without\s+insurance|don'?t\s+have\s+(?:any\s+)?insurance|self[\s-]*pay)\b",
     "accepts_uninsured", True),
    (r"\b(?:telehealth|telemedicine|virtual\s+visits?|video\s+visits?|online\s+appointments?)\b",
     "telehealth_available", True),
    (r"\b(?:no\s*ssn|without\s+(?:an?\s+)?ssn|don'?t\s+(?:have|require)\s+(?:an?\s+)?ssn|ssn\s+not\s+required"
     r"|no\s+social\s+security)\b", "ssn_required", False),
    (r"\b(?:requires?\s+(?:an?\s+)?ssn|ssn\s+(?:is\s+)?required)\b", "ssn_required", True),
]

RETRACTION_PATTERN = re.compile(
    r"\b(?:never\s*mind|forget(?:\s+about)?|ignore|drop|remove)\s+(?:the\s+|my\s+|that\s+|about\s+)?"
    r"(insurance|location|services?|free|telehealth)\b"
)
ANY_SERVICE_PATTERN = re.compile(r"\bany\s+service\b")
ANYWHERE_PATTERN = re.compile(r"\banywhere\b")
DC_PATTERN = re.compile(r"\bwashington,?\s*d\.?c\.?(?=\W|$)|\bd\.?c\.?(?=\W|$)")
LOCATION_PATTERN = re.compile(r"^.*\b(?:in|near)\s+([a-z][a-z\s,\.]*?)[\s\.\?!]*$", re.DOTALL)
SELF_LOCATION_PATTERN = re.compile(r"^(?:(?:me|here|my\s+(?:area|location|home))\b[\s,]*)+")
NOT_PLACES = ("network", "person", "general", "english", "spanish")
NOT_PLACE_NAMES = {"me", "you", "here", "my area", "my location", "my home"}
# A place name ends where the sentence carries on
PLACE_BREAKS = {"that", "which", "who", "with", "and", "for", "take", "takes", "accept", "accepts", "please"}


def _union(existing: List[str], incoming: List[str]) -> List[str]:
    """Order-preserving, case-insensitive union."""
    merged = list(existing)
    seen = {item.lower() for item in merged}
    for item in incoming:
        if item.lower() not in seen:
            seen.add(item.lower())
            merged.append(item)
    return merged


def _coerce_terms(value: Any) -> Optional[List[str]]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
        return None
    return [item.strip() for item in value if item.strip()]


def merge_state(prior: ConversationFilterState, signals: ExtractedSignals) -> ConversationFilterState:
    """
    Fold extracted signals into the prior state.

    Signals are applied in order, so the last statement about a field wins.
    Fields nobody mentions are left untouched. Unknown fields and wrongly
    typed values are logged and ignored.

    Args:
        prior: State accumulated over previous turns
        signals: Ordered statements from the current turn

    Returns:
        A new ConversationFilterState; ``prior`` is not modified
    """
    values = prior.model_dump()

    for signal in signals.signals:
        field = signal.field
        if field not in STATE_FIELDS:
            logger.warning(f"Ignoring signal for unknown field: {field}")
            continue

        if signal.op == "reset":
            values[field] = None
            continue

        if field in LIST_FIELDS:
            terms = _coerce_terms(signal.value)
            if terms is None:
                logger.warning(f"Ignoring non-list value for {field}: {signal.value!r}")
                continue
            if signal.op == "add":
                if terms:
                    values[field] = _union(values[field] or [], terms)
            else:
                values[field] = _union([], terms) or None

        elif field in FLAG_FIELDS:
            if not isinstance(signal.value, bool):
                logger.warning(f"Ignoring non-boolean value for {field}: {signal.value!r}")
                continue
            values[field] = signal.value

        else:
            if not isinstance(signal.value, str) or not signal.value.strip():
                logger.warning(f"Ignoring empty value for {field}")
                continue
            values[field] = signal.value.strip()

    return ConversationFilterState(**values)


def _location_signal(text: str, lowered: str) -> Optional[Tuple[int, List[Signal]]]:
    dc = DC_PATTERN.search(lowered)
    if dc:
        return dc.start(), [Signal(field="location_text", value="Washington, DC")]

    # Greedy prefix: the last "in"/"near" clause names the place
    match = LOCATION_PATTERN.match(lowered)
    if not match:
        return None
    tail = match.group(1)
    own = SELF_LOCATION_PATTERN.match(tail)
    skip = own.end() if own else 0
    words = []
    for word in tail[skip:].split():
        if word.strip(",.") in PLACE_BREAKS:
            break
        words.append(word)
    place = " ".join(words).strip(" ,.")
    if not place or place in NOT_PLACE_NAMES or place.startswith(NOT_PLACES) or len(words) > 4:
        return None
    # Keep the user's own casing
    start = match.start(1) + skip
    original = text[start:start + len(place)]
    return start, [Signal(field="location_text", value=original.strip())]


def heuristic_signals(utterance: str) -> ExtractedSignals:
    """
    Deterministic extraction of explicit statements.

    Signals are emitted in utterance order so that, within one message,
    a later statement about a field overrides an earlier one. When two
    matches overlap the earlier (longer) one wins, so "don't require ssn"
    is not also read as "require ssn".

    Args:
        utterance: The latest user message

    Returns:
        Ordered signals plus an optional provider name hint
    """
    text = utterance or ""
    lowered = text.lower()
    found: List[Tuple[int, int, List[Signal]]] = []

    for pattern, field, value in FLAG_PATTERNS:
        for match in re.finditer(pattern, lowered):
            found.append((match.start(), match.end(), [Signal(field=field, value=value)]))

    for key, canonical in CARRIER_MAP.items():
        for match in re.finditer(r"\b" + re.escape(key) + r"\b", lowered):
            found.append((match.start(), match.end(),
                          [Signal(field="insurance_providers", value=[canonical], op="add")]))

    for term, pattern in SERVICE_VOCABULARY.items():
        for match in re.finditer(pattern, lowered):
            found.append((match.start(), match.end(),
                          [Signal(field="service_terms", value=[term], op="add")]))

    for match in RETRACTION_PATTERN.finditer(lowered):
        fields = RETRACTION_TARGETS[match.group(1)]
        found.append((match.start(), match.end(), [Signal(field=f, op="reset") for f in fields]))
    for match in ANY_SERVICE_PATTERN.finditer(lowered):
        found.append((match.start(), match.end(), [Signal(field="service_terms", op="reset")]))
    for match in ANYWHERE_PATTERN.finditer(lowered):
        found.append((match.start(), match.end(), [Signal(field="location_text", op="reset")]))

    # Earliest first; longer match first on ties
    found.sort(key=lambda item: (item[0], -(item[1] - item[0])))
    kept: List[Tuple[int, List[Signal]]] = []
    taken: List[Tuple[int, int]] = []
    for start, end, emitted in found:
        if any(start < t_end and end > t_start for t_start, t_end in taken):
            continue
        taken.append((start, end))
        kept.append((start, emitted))

    # Location spans the tail of the sentence, so it never competes for overlap
    location = _location_signal(text, lowered)
    if location:
        kept.append(location)
    kept.sort(key=lambda item: item[0])

    signals = [signal for _, emitted in kept for signal in emitted]
    return ExtractedSignals(signals=signals, provider_name=extract_name_hint(text))


def format_history(conversation: List[Dict[str, str]], max_messages: int = 6) -> str:
    """Render the tail of the conversation for the prompt."""
    lines = []
    for message in conversation[-max_messages:]:
        role = message.get("role", "user")
        content = message.get("content", "")
        lines.append(f"{role}: {content}")
    return "\n".join(lines)


class SignalExtractor:
    """Language-understanding collaborator: chat model first, heuristics last."""

    def __init__(self, llm=None, use_llm: Optional[bool] = None):
        """
        Initialize the extractor.

        Args:
            llm: Optional chat model; built from config on first use otherwise
            use_llm: Override for the ``use_llm_extraction`` feature flag
        """
        self.use_llm = FEATURES["use_llm_extraction"] if use_llm is None else use_llm
        self._llm = llm

    def _chain(self):
        if not self.use_llm:
            return None
        if self._llm is None:
            if not llm_configured():
                return None
            self._llm = get_llm()
        return SIGNAL_EXTRACTION_PROMPT | self._llm

    async def _llm_signals(self,
                           utterance: str,
                           conversation: List[Dict[str, str]],
                           prior: ConversationFilterState) -> Tuple[Optional[ExtractedSignals], str]:
        chain = self._chain()
        if chain is None:
            return None, "disabled"

        raw = await asyncio.to_thread(
            safe_llm_call,
            chain,
            {
                "utterance": utterance,
                "history": format_history(conversation),
                "prior_state": prior.model_dump_json(exclude_none=True),
            },
            "",
        )
        if not raw:
            return None, "failed"

        data = parse_json_object(raw)
        if data is None:
            return None, "failed"

        return ExtractedSignals.from_mapping(data), "ok"

    async def extract(self,
                      utterance: str,
                      conversation: Optional[List[Dict[str, str]]] = None,
                      prior: Optional[ConversationFilterState] = None) -> Tuple[ExtractedSignals, Dict[str, Any]]:
        """
        Extract ordered signals from the latest utterance.

        Args:
            utterance: The latest user message
            conversation: Prior messages (``role``/``content`` dicts)
            prior: State accumulated so far

        Returns:
            (signals, extraction metadata)
        """
        prior = prior or ConversationFilterState()
        llm_signals, llm_status = await self._llm_signals(utterance, conversation or [], prior)
        heuristics = heuristic_signals(utterance)

        signals = llm_signals.extend(heuristics) if llm_signals else heuristics
        if llm_status == "failed":
            logger.warning("LLM signal extraction failed, using heuristics only")

        logger.info(f"Extracted {len(signals.signals)} signals (llm={llm_status})")
        return signals, {"llm": llm_status, "signal_count": len(signals.signals)}


def make_extract_state_node(extractor: SignalExtractor):
    """Build the graph node that folds this turn's signals into the state."""

    async def extract_state(state: DiscoveryState) -> DiscoveryState:
        prior = state.get("prior_state") or ConversationFilterState()
        request_signals = state.get("request_signals")

        if request_signals is not None:
            signals = request_signals
            extraction = {"llm": "skipped", "signal_count": len(signals.signals), "source": "request"}
        else:
            signals, extraction = await extractor.extract(
                state.get("utterance", ""), state.get("conversation", []), prior
            )
            extraction["source"] = "extractor"

        filter_state = merge_state(prior, signals)
        logger.info(f"Merged filter state: {filter_state.model_dump(exclude_none=True)}")

        return {
            **state,
            "signals": signals,
            "filter_state": filter_state,
            "debug": {
                **(state.get("debug") or {}),
                "extraction": extraction,
            }
        }

    return extract_state
