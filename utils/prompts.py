"""
Prompt templates for the provider discovery engine.
"""
from langchain_core.prompts import ChatPromptTemplate

# Signal Extraction Prompt
SIGNAL_EXTRACTION_PROMPT = ChatPromptTemplate.from_messages([
    ("system", """You extract persistent search intent from a healthcare provider search conversation.
    Current state (JSON): {prior_state}
    Recent conversation: {history}

    Return a JSON object with these keys, using null for anything the LATEST user message does not state:
    - service_terms: list of services asked for (e.g. "mammogram", "sti testing", "dental")
    - free_only: true if the user wants free care only, false if they say it does not need to be free
    - accepts_medicaid: true/false when the user states Medicaid coverage
    - accepts_medicare: true/false when the user states Medicare coverage
    - accepts_uninsured: true when the user has no insurance or will self-pay
    - telehealth_available: true when the user wants virtual/telehealth visits
    - ssn_required: false when the user has no SSN, true only if they say an SSN is fine
    - insurance_providers: list of carrier names (Cigna, Aetna, United Healthcare, Blue Cross ...)
    - location_text: a place name if mentioned (e.g. "Austin", "Washington, DC")
    - provider_name: the provider's name if the user asks about one specific provider
    - reset_fields: list of keys the user explicitly retracts (e.g. "never mind the insurance")

    Do not carry forward values from the current state; only report what the latest message says.
    Return ONLY valid JSON, no other text."""),
    ("human", "{utterance}")
])
