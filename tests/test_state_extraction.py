"""
Tests for conversation state extraction and merging.
"""
import unittest
import sys
import os
import logging
from unittest.mock import patch

from langchain_core.language_models import FakeListChatModel

# Add parent directory to path to allow imports
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models.state import ConversationFilterState, ExtractedSignals, Signal
from pipeline.state_extraction import (
    SignalExtractor,
    heuristic_signals,
    make_extract_state_node,
    merge_state,
)

# Disable logging during tests
logging.disable(logging.CRITICAL)


def merged(utterance, prior=None):
    return merge_state(prior or ConversationFilterState(), heuristic_signals(utterance))


class TestMergeState(unittest.TestCase):
    """Tests for the merge_state reducer."""

    def setUp(self):
        self.prior = ConversationFilterState(
            service_terms=["STI"],
            free_only=True,
            accepts_medicaid=False,
            location_text="Austin",
        )

    def test_empty_signals_is_noop(self):
        """Merging nothing returns an equal state."""
        self.assertEqual(merge_state(self.prior, ExtractedSignals()), self.prior)

    def test_absent_fields_are_retained(self):
        """Only mentioned fields change."""
        signals = ExtractedSignals(signals=[Signal(field="telehealth_available", value=True)])
        result = merge_state(self.prior, signals)

        self.assertTrue(result.telehealth_available)
        self.assertEqual(result.service_terms, ["STI"])
        self.assertTrue(result.free_only)
        self.assertFalse(result.accepts_medicaid)
        self.assertEqual(result.location_text, "Austin")

    def test_explicit_value_overwrites(self):
        """A new explicit value replaces the old one, including True -> False."""
        signals = ExtractedSignals(signals=[
            Signal(field="free_only", value=False),
            Signal(field="accepts_medicaid", value=True),
        ])
        result = merge_state(self.prior, signals)

        self.assertIs(result.free_only, False)
        self.assertIs(result.accepts_medicaid, True)

    def test_last_write_wins(self):
        """Conflicting statements resolve to the last one."""
        signals = ExtractedSignals(signals=[
            Signal(field="free_only", value=False),
            Signal(field="free_only", value=True),
        ])
        self.assertTrue(merge_state(ConversationFilterState(), signals).free_only)

    def test_list_fields_union(self):
        """Add unions case-insensitively and keeps order."""
        signals = ExtractedSignals(signals=[Signal(field="service_terms", value=["sti", "dental"], op="add")])
        result = merge_state(self.prior, signals)

        self.assertEqual(result.service_terms, ["STI", "dental"])

    def test_reset_retracts_field(self):
        """Reset sets a field back to not-established."""
        signals = ExtractedSignals(signals=[Signal(field="location_text", op="reset")])
        result = merge_state(self.prior, signals)

        self.assertIsNone(result.location_text)
        self.assertEqual(result.service_terms, ["STI"])

    def test_invalid_signals_are_ignored(self):
        """Unknown fields and wrongly typed values leave the state untouched."""
        signals = ExtractedSignals(signals=[
            Signal(field="favorite_color", value="blue"),
            Signal(field="free_only", value="yes"),
            Signal(field="service_terms", value=42, op="add"),
        ])
        self.assertEqual(merge_state(self.prior, signals), self.prior)

    def test_prior_is_not_mutated(self):
        """The reducer is pure."""
        before = self.prior.model_copy(deep=True)
        merge_state(self.prior, ExtractedSignals(signals=[Signal(field="service_terms", value=["x"], op="add")]))
        self.assertEqual(self.prior, before)

    def test_medicaid_and_uninsured_coexist(self):
        """Both coverage flags can be true at once."""
        result = merged("I have medicaid but my partner is uninsured")
        self.assertTrue(result.accepts_medicaid)
        self.assertTrue(result.accepts_uninsured)


class TestExtractedSignals(unittest.TestCase):
    """Tests for building signals from a flat mapping."""

    def test_from_mapping(self):
        """Resets come first, list fields are added, nulls are skipped."""
        signals = ExtractedSignals.from_mapping({
            "reset_fields": ["location_text"],
            "service_terms": "mammogram",
            "accepts_medicare": True,
            "free_only": None,
            "provider_name": "  ",
        })

        self.assertEqual(signals.signals[0], Signal(field="location_text", op="reset"))
        self.assertIn(Signal(field="service_terms", value=["mammogram"], op="add"), signals.signals)
        self.assertIn(Signal(field="accepts_medicare", value=True), signals.signals)
        self.assertNotIn("free_only", [s.field for s in signals.signals])
        self.assertIsNone(signals.provider_name)


class TestHeuristicSignals(unittest.TestCase):
    """Tests for the deterministic extractor."""

    def test_free_service_and_location(self):
        """Free STI testing in a city."""
        state = merged("I need free STI testing in Austin")

        self.assertTrue(state.free_only)
        self.assertEqual(state.service_terms, ["sti"])
        self.assertEqual(state.location_text, "Austin")

    def test_uninsured_without_ssn(self):
        """Coverage and SSN policy statements."""
        state = merged("actually I'm uninsured and don't have an SSN")

        self.assertTrue(state.accepts_uninsured)
        self.assertIs(state.ssn_required, False)

    def test_negated_ssn_requirement(self):
        """'don't require ssn' is not read as requiring one."""
        state = merged("clinics that don't require SSN")
        self.assertIs(state.ssn_required, False)

    def test_ssn_required(self):
        state = merged("it's fine if they require an SSN")
        self.assertIs(state.ssn_required, True)

    def test_free_negation(self):
        """'doesn't need to be free' clears the free-only preference."""
        prior = ConversationFilterState(free_only=True)
        self.assertIs(merged("it doesn't need to be free", prior).free_only, False)

    def test_conflict_in_one_message(self):
        """Within one message the later statement wins."""
        state = merged("free clinics please, actually it doesn't need to be free")
        self.assertIs(state.free_only, False)

    def test_carriers_are_canonicalized(self):
        """Carrier mentions map to canonical names without duplicates."""
        state = merged("I have Blue Cross Blue Shield and Aetna")
        self.assertEqual(state.insurance_providers, ["Blue Cross Blue Shield", "Aetna"])

    def test_location_stops_at_clause(self):
        """The place name ends before a trailing clause."""
        state = merged("dental clinics in austin that take medicaid")

        self.assertEqual(state.location_text, "austin")
        self.assertEqual(state.service_terms, ["dental"])
        self.assertTrue(state.accepts_medicaid)

    def test_location_uses_last_clause(self):
        """An earlier 'in' never leaks into the place name."""
        state = merged("I'm interested in dental care in Austin")

        self.assertEqual(state.location_text, "Austin")
        self.assertEqual(state.service_terms, ["dental"])

    def test_location_skips_near_me(self):
        self.assertEqual(merged("find a clinic near me in Austin").location_text, "Austin")
        self.assertEqual(merged("find a clinic near me, Round Rock").location_text, "Round Rock")
        self.assertIsNone(merged("find a clinic near me").location_text)

    def test_dc_special_case(self):
        state = merged("medicaid clinics in washington dc")
        self.assertEqual(state.location_text, "Washington, DC")

    def test_retraction(self):
        """'never mind the insurance' clears every coverage field."""
        prior = ConversationFilterState(
            accepts_medicaid=True,
            accepts_uninsured=True,
            insurance_providers=["Aetna"],
            service_terms=["dental"],
        )
        state = merged("never mind the insurance", prior)

        self.assertIsNone(state.accepts_medicaid)
        self.assertIsNone(state.accepts_uninsured)
        self.assertIsNone(state.insurance_providers)
        self.assertEqual(state.service_terms, ["dental"])

    def test_provider_name_hint(self):
        signals = heuristic_signals("Tell me more about Main Street Clinic")
        self.assertEqual(signals.provider_name, "main street clinic")


class TestSignalExtractor(unittest.IsolatedAsyncioTestCase):
    """Tests for the LLM-backed extractor."""

    async def test_llm_then_heuristics(self):
        """Model signals are applied first, heuristics after."""
        llm = FakeListChatModel(responses=['```json\n{"accepts_medicaid": true, "service_terms": ["mammogram"]}\n```'])
        extractor = SignalExtractor(llm=llm, use_llm=True)

        signals, meta = await extractor.extract("I need a mammogram, I'm on medicare")
        state = merge_state(ConversationFilterState(), signals)

        self.assertEqual(meta["llm"], "ok")
        self.assertTrue(state.accepts_medicaid)
        self.assertTrue(state.accepts_medicare)
        self.assertEqual(state.service_terms, ["mammogram"])

    async def test_unparseable_llm_output_falls_back(self):
        """A non-JSON answer degrades to heuristics only."""
        extractor = SignalExtractor(llm=FakeListChatModel(responses=["I think they want dental care"]), use_llm=True)

        signals, meta = await extractor.extract("dental care near me please")

        self.assertEqual(meta["llm"], "failed")
        self.assertEqual(merge_state(ConversationFilterState(), signals).service_terms, ["dental"])

    async def test_model_built_lazily_from_config(self):
        """Without credentials the chat model is never built."""
        with patch('pipeline.state_extraction.llm_configured', return_value=False), \
                patch('pipeline.state_extraction.get_llm') as mock_get_llm:
            signals, meta = await SignalExtractor(use_llm=True).extract("free clinics")

        mock_get_llm.assert_not_called()
        self.assertEqual(meta["llm"], "disabled")
        self.assertTrue(merge_state(ConversationFilterState(), signals).free_only)

    async def test_failed_call_degrades(self):
        """An empty answer from the model counts as a failed extraction."""
        llm = FakeListChatModel(responses=["{}"])
        with patch('pipeline.state_extraction.safe_llm_call', return_value=""):
            _, meta = await SignalExtractor(llm=llm, use_llm=True).extract("dental")
        self.assertEqual(meta["llm"], "failed")

    async def test_disabled_llm(self):
        extractor = SignalExtractor(use_llm=False)
        signals, meta = await extractor.extract("free clinics")

        self.assertEqual(meta["llm"], "disabled")
        self.assertTrue(merge_state(ConversationFilterState(), signals).free_only)

    async def test_node_uses_request_signals(self):
        """Pre-extracted signals bypass the extractor."""
        node = make_extract_state_node(SignalExtractor(use_llm=False))
        request_signals = ExtractedSignals(signals=[Signal(field="telehealth_available", value=True)])

        result = await node({
            "utterance": "free clinics",
            "prior_state": ConversationFilterState(),
            "request_signals": request_signals,
            "debug": {},
        })

        self.assertTrue(result["filter_state"].telehealth_available)
        self.assertIsNone(result["filter_state"].free_only)
        self.assertEqual(result["debug"]["extraction"]["source"], "request")


if __name__ == '__main__':
    unittest.main()
