"""Tests for mention context windows and rule-based sentiment."""

from app.analysis.sentiment import (
    classify_sentiment,
    mention_context,
    mention_sentiment,
    score_sentiment,
    sentence_at,
)
from app.analysis.types import SentimentLabel


class TestContext:
    def test_fifty_characters_each_side(self):
        text = "x" * 100 + "Acme" + "y" * 100
        assert mention_context(text, 100, 104) == "x" * 50 + "Acme" + "y" * 50

    def test_clipped_and_trimmed_at_edges(self):
        text = "  Acme leads.  "
        assert mention_context(text, 2, 6) == "Acme leads."


class TestSentenceAt:
    def test_picks_sentence_holding_offset(self):
        text = "Acme is great. HubSpot is bad."
        assert sentence_at(text, text.index("HubSpot")) == "HubSpot is bad"

    def test_domains_do_not_split_sentences(self):
        text = "See acme.com for Acme pricing. Next sentence."
        assert sentence_at(text, text.index("Acme")) == "See acme.com for Acme pricing"

    def test_last_sentence_without_terminator(self):
        text = "First one. Acme closes it"
        assert sentence_at(text, text.index("Acme")) == "Acme closes it"


class TestClassify:
    def test_positive_keyword(self):
        assert classify_sentiment("I highly recommend Acme", "acme") == SentimentLabel.POSITIVE

    def test_negative_keywords_and_phrase(self):
        assert classify_sentiment("Avoid Acme, it has known issues", "acme") == SentimentLabel.NEGATIVE

    def test_plain_mention_is_neutral(self):
        assert classify_sentiment("Acme is a CRM", "acme") == SentimentLabel.NEUTRAL

    def test_negated_recommendation(self):
        assert classify_sentiment("I would not recommend Acme", "acme") == SentimentLabel.NEGATIVE
        assert classify_sentiment("Acme isn't the best option", "acme") == SentimentLabel.NEGATIVE

    def test_brand_phrase_outweighs_single_keyword(self):
        assert score_sentiment("Try Acme despite some limitations", "Acme") == (2, 1)
        assert classify_sentiment("Try Acme despite some limitations", "Acme") == SentimentLabel.POSITIVE

    def test_keywords_match_whole_words(self):
        # "stop" must not count as "top"
        assert score_sentiment("Stop using Acme", "acme") == (0, 0)

    def test_tie_is_neutral(self):
        assert classify_sentiment("Acme is great but has drawbacks", "acme") == SentimentLabel.NEUTRAL


class TestMentionSentiment:
    def test_scores_only_the_mention_sentence(self):
        text = "Acme is excellent. Avoid HubSpot, it is outdated."
        assert mention_sentiment(text, "acme", 0, text) == SentimentLabel.POSITIVE
        assert mention_sentiment(text, "hubspot", text.index("HubSpot"), text) == SentimentLabel.NEGATIVE

    def test_falls_back_to_context(self):
        assert mention_sentiment("...", "acme", 0, "Acme is the best") == SentimentLabel.POSITIVE
